"""
Group resolution and attendee management
"""

import logging
from typing import Any, Dict, Optional

from app.core.errors import AttendeeNotFound, EventNotFound, GroupNotFound
from app.schemas.attendee import AttendeeCreate, AttendeeResponse, AttendeeUpdate, GroupResponse
from app.services.repositories import AttendanceRepository, attendance_stamp

logger = logging.getLogger(__name__)

CREATE_NEW_GROUP = "CREATE_NEW_GROUP"


class GroupService:
    """Service for finding, creating and assigning groups"""

    @staticmethod
    def resolve_group(
        repo: AttendanceRepository,
        event_id: str,
        requested_name: str,
        contact_name: str,
        contact_email: str
    ) -> GroupResponse:
        """Return the group an attendee should join.

        The ``CREATE_NEW_GROUP`` sentinel always creates a fresh group named
        after the submitting attendee. Any other value must exactly match an
        existing group name in the event; nothing is auto-created.
        """
        if requested_name == CREATE_NEW_GROUP:
            group = repo.create_group(event_id, contact_name, contact_email)
            logger.info(f"Created group {group.id} '{group.name}' in event {event_id}")
            return group

        group = repo.find_group_by_name(event_id, requested_name)
        if not group:
            raise GroupNotFound(requested_name)
        return group

    @staticmethod
    def find_or_create_group(
        repo: AttendanceRepository,
        event_id: str,
        group_name: str,
        contact_email: str
    ) -> GroupResponse:
        """Lookup by name, creating the group when absent (used by bulk import)"""
        group = repo.find_group_by_name(event_id, group_name)
        if group:
            return group
        group = repo.create_group(event_id, group_name, contact_email)
        logger.info(f"Created group {group.id} '{group.name}' in event {event_id}")
        return group

    @staticmethod
    def get_event_group(repo: AttendanceRepository, event_id: str, group_id: str) -> GroupResponse:
        """Group by id, only if it belongs to ``event_id``"""
        group = repo.get_group(group_id)
        if not group or group.event_id != event_id:
            raise GroupNotFound(group_id)
        return group


class AttendeeService:
    """Service for adding, editing and removing guests"""

    @staticmethod
    def add_attendee(repo: AttendanceRepository, event_id: str, data: AttendeeCreate) -> AttendeeResponse:
        if not repo.get_event(event_id):
            raise EventNotFound(event_id)

        group = GroupService.resolve_group(repo, event_id, data.group_name, data.name, data.email)
        attendee = repo.create_attendee(
            event_id=event_id,
            group_id=group.id,
            name=data.name,
            email=data.email,
            role=data.role,
        )
        logger.info(f"Added attendee {attendee.id} to group {group.id}")
        return attendee

    @staticmethod
    def update_attendee(
        repo: AttendanceRepository,
        event_id: str,
        attendee_id: str,
        update: AttendeeUpdate,
        operator: Optional[str]
    ) -> AttendeeResponse:
        current = repo.get_attendee(event_id, attendee_id)
        if not current:
            raise AttendeeNotFound(attendee_id)

        updates: Dict[str, Any] = update.model_dump(exclude_unset=True, exclude={"is_attending"})
        if update.group_id is not None and update.group_id != current.group_id:
            GroupService.get_event_group(repo, event_id, update.group_id)
        if update.is_attending is not None and update.is_attending != current.is_attending:
            updates.update(attendance_stamp(update.is_attending, operator))

        return repo.update_attendee(event_id, attendee_id, updates)

    @staticmethod
    def remove_attendee(repo: AttendanceRepository, event_id: str, attendee_id: str) -> None:
        if not repo.delete_attendee(event_id, attendee_id):
            raise AttendeeNotFound(attendee_id)
        logger.info(f"Removed attendee {attendee_id} from event {event_id}")
