"""
Database models package
"""

from .event import Event
from .group import Group
from .attendee import Attendee
from .user_role import UserRole

__all__ = ["Event", "Group", "Attendee", "UserRole"]
