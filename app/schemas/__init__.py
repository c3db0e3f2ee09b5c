"""
Pydantic schemas package
"""

from .common import *
from .event import *
from .attendee import *
from .attendance import *
from .auth import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "EventCreate",
    "EventUpdate",
    "EventResponse",
    "EventDetail",
    "EventStats",
    "GroupCreate",
    "GroupResponse",
    "GroupDetail",
    "AttendeeCreate",
    "AttendeeUpdate",
    "AttendeeResponse",
    "EmailRequest",
    "SessionCreate",
    "RescanRequest",
    "LoginRequest",
    "RoleUpdate",
]
