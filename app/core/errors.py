"""
Domain errors raised by the services and converted to responses by the API
"""

from typing import List, Optional


class AttendanceError(Exception):
    """Base class for all user-facing errors"""

    status_code = 400

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def error_code(self) -> str:
        return type(self).__name__


class InvalidQrFormat(AttendanceError):
    """Scanned payload is not a valid group QR code"""


class GroupNotFound(AttendanceError):
    status_code = 404

    def __init__(self, group_name: str):
        super().__init__(f'Group "{group_name}" not found')
        self.group_name = group_name


class EventNotFound(AttendanceError):
    status_code = 404

    def __init__(self, event_id: str):
        super().__init__("Event not found")
        self.event_id = event_id


class AttendeeNotFound(AttendanceError):
    status_code = 404

    def __init__(self, attendee_id: str):
        super().__init__("Attendee not found")
        self.attendee_id = attendee_id


class EmptyGroup(AttendanceError):
    status_code = 404

    def __init__(self):
        super().__init__("No attendees found for this group")


class ImportValidationError(AttendanceError):
    status_code = 422


class PersistenceError(AttendanceError):
    """The backing store rejected a read or write"""

    status_code = 502


class AuthenticationError(AttendanceError):
    status_code = 401


class PermissionDenied(AttendanceError):
    status_code = 403


class ProviderTokenMissing(AttendanceError):
    status_code = 401

    def __init__(self):
        super().__init__(
            "No Microsoft access token available. Please sign in with Microsoft to send emails."
        )


class EmailSendError(AttendanceError):
    status_code = 502


class InvalidSessionState(AttendanceError):
    status_code = 409


class SessionNotFound(AttendanceError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__("Attendance session not found or expired")
        self.session_id = session_id
