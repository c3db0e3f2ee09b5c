"""
Attendance reconciliation: load a roster, toggle attendance locally, then
persist only what changed since the last save.

A session runs in one of two modes. Manual mode covers a whole event and
supports search; QR mode is fixed to the group named by a scanned payload.
Local mutations never touch the store. ``save`` diffs the working copy
against the baseline snapshot by attendee id and issues at most two batch
updates (now-present, now-absent).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.errors import (
    AttendanceError,
    AttendeeNotFound,
    EmptyGroup,
    EventNotFound,
    InvalidSessionState,
    PersistenceError,
    SessionNotFound,
)
from app.schemas.attendee import AttendeeResponse
from app.schemas.event import EventResponse
from app.services.qr_service import QrPayload, parse_qr_payload
from app.services.repositories import AttendanceRepository

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    SAVING = "saving"
    FAILED = "failed"


class SessionMode(str, Enum):
    MANUAL = "manual"
    QR = "qr"


@dataclass(frozen=True)
class AttendanceEntry:
    id: str
    name: str
    email: str
    group_id: str
    group_name: Optional[str]
    is_attending: bool
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None

    @classmethod
    def from_attendee(cls, attendee: AttendeeResponse) -> "AttendanceEntry":
        return cls(
            id=attendee.id,
            name=attendee.name,
            email=attendee.email,
            group_id=attendee.group_id,
            group_name=attendee.group_name,
            is_attending=bool(attendee.is_attending),
            checked_in_at=attendee.checked_in_at if attendee.is_attending else None,
            checked_in_by=attendee.checked_in_by if attendee.is_attending else None,
        )

    def present(self, operator: str, now: datetime) -> "AttendanceEntry":
        return replace(self, is_attending=True, checked_in_at=now, checked_in_by=operator)

    def absent(self) -> "AttendanceEntry":
        return replace(self, is_attending=False, checked_in_at=None, checked_in_by=None)


Roster = Tuple[AttendanceEntry, ...]


@dataclass(frozen=True)
class AttendanceDiff:
    present_ids: Tuple[str, ...] = ()
    absent_ids: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.present_ids and not self.absent_ids


# -------- pure transitions --------

def toggle(roster: Roster, attendee_id: str, operator: str, now: datetime) -> Roster:
    if not any(entry.id == attendee_id for entry in roster):
        raise AttendeeNotFound(attendee_id)
    return tuple(
        (entry.absent() if entry.is_attending else entry.present(operator, now))
        if entry.id == attendee_id else entry
        for entry in roster
    )


def mark_all_present(roster: Roster, operator: str, now: datetime) -> Roster:
    return tuple(entry if entry.is_attending else entry.present(operator, now) for entry in roster)


def clear_all(roster: Roster) -> Roster:
    return tuple(entry.absent() if entry.is_attending else entry for entry in roster)


def diff(baseline: Roster, working: Roster) -> AttendanceDiff:
    """Ids whose flag differs from the baseline, split by new value"""
    saved = {entry.id: entry.is_attending for entry in baseline}
    present: List[str] = []
    absent: List[str] = []
    for entry in working:
        if entry.id in saved and saved[entry.id] == entry.is_attending:
            continue
        (present if entry.is_attending else absent).append(entry.id)
    return AttendanceDiff(present_ids=tuple(present), absent_ids=tuple(absent))


def filter_roster(roster: Roster, search: Optional[str]) -> Roster:
    """Case-insensitive substring match on name, email or group name"""
    if not search:
        return roster
    term = search.lower()
    return tuple(
        entry for entry in roster
        if term in entry.name.lower()
        or term in entry.email.lower()
        or (entry.group_name and term in entry.group_name.lower())
    )


# -------- session --------

class AttendanceSession:
    """One operator's attendance screen for an event or a single group"""

    def __init__(
        self,
        operator: str,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.id = session_id or secrets.token_urlsafe(12)
        self.operator = operator
        self.owner_id = owner_id
        self.clock = clock
        self.last_active = clock()

        self.state = SessionState.LOADING
        self.mode = SessionMode.MANUAL
        self.event: Optional[EventResponse] = None
        self.group_id: Optional[str] = None
        self.group_name: Optional[str] = None
        self.baseline: Roster = ()
        self.working: Roster = ()
        self.dirty = False
        self.failure: Optional[AttendanceError] = None
        self.last_save_error: Optional[str] = None

        self._event_id: Optional[str] = None
        self._qr_data: Optional[str] = None

    # -------- loading --------

    def load(self, repo: AttendanceRepository, event_id: Optional[str] = None, qr_data: Optional[str] = None) -> SessionState:
        """Fetch the event and roster; a QR payload selects QR mode"""
        self._event_id = event_id
        self._qr_data = qr_data
        self.state = SessionState.LOADING
        self.failure = None
        self.last_save_error = None
        self.mode = SessionMode.QR if qr_data else SessionMode.MANUAL
        self.group_id = None
        self.group_name = None

        try:
            payload: Optional[QrPayload] = parse_qr_payload(qr_data) if qr_data else None
            actual_event_id = payload.event_id if payload else event_id
            if not actual_event_id:
                raise EventNotFound("")

            event = repo.get_event(actual_event_id)
            if not event:
                raise EventNotFound(actual_event_id)

            if payload:
                attendees = repo.list_group_attendees(actual_event_id, payload.group_id)
                if not attendees:
                    raise EmptyGroup()
                self.group_id = payload.group_id
                self.group_name = attendees[0].group_name or "Unknown Group"
            else:
                attendees = repo.list_event_attendees(actual_event_id)
        except AttendanceError as e:
            logger.error(f"Error loading attendance session {self.id}: {e.message}")
            self.state = SessionState.FAILED
            self.failure = e
            self.event = None
            self.baseline = self.working = ()
            self.dirty = False
            return self.state

        self.event = event
        self.baseline = tuple(AttendanceEntry.from_attendee(a) for a in attendees)
        self.working = self.baseline
        self.dirty = False
        self.state = SessionState.READY
        logger.info(f"Attendance session {self.id} loaded {len(self.working)} attendees ({self.mode.value} mode)")
        return self.state

    def reload(self, repo: AttendanceRepository) -> SessionState:
        """Retry the last load with the same event or payload"""
        return self.load(repo, event_id=self._event_id, qr_data=self._qr_data)

    def rescan(self, repo: AttendanceRepository, qr_data: str) -> SessionState:
        """Switch to a newly scanned group; unsaved changes are dropped"""
        if self.dirty:
            logger.warning(f"Attendance session {self.id} discarded unsaved changes on rescan")
        return self.load(repo, qr_data=qr_data)

    # -------- local mutations --------

    def _require_ready(self):
        if self.state != SessionState.READY:
            raise InvalidSessionState(f"Attendance session is {self.state.value}")

    def _apply(self, roster: Roster) -> bool:
        changed = roster != self.working
        self.working = roster
        if changed:
            self.dirty = True
        return changed

    def toggle(self, attendee_id: str) -> AttendanceEntry:
        self._require_ready()
        self._apply(toggle(self.working, attendee_id, self.operator, self.clock()))
        return next(entry for entry in self.working if entry.id == attendee_id)

    def mark_all_present(self) -> bool:
        self._require_ready()
        return self._apply(mark_all_present(self.working, self.operator, self.clock()))

    def clear_all(self) -> bool:
        self._require_ready()
        return self._apply(clear_all(self.working))

    # -------- persistence --------

    def pending_changes(self) -> AttendanceDiff:
        return diff(self.baseline, self.working)

    def save(self, repo: AttendanceRepository) -> AttendanceDiff:
        """Persist the diff against the baseline in at most two batch calls.

        On failure the working copy and dirty flag are kept, so a retry
        re-sends the full diff.
        """
        self._require_ready()
        self.state = SessionState.SAVING
        changes = self.pending_changes()
        event_id = self.event.id

        try:
            if changes.present_ids:
                repo.mark_attendance(event_id, list(changes.present_ids), True, self.operator)
            if changes.absent_ids:
                repo.mark_attendance(event_id, list(changes.absent_ids), False, None)
        except PersistenceError as e:
            self.state = SessionState.READY
            self.last_save_error = e.message
            logger.error(f"Attendance session {self.id} save failed: {e.message}")
            raise

        self.baseline = self.working
        self.dirty = False
        self.last_save_error = None
        self.state = SessionState.READY
        logger.info(
            f"Attendance session {self.id} saved: {len(changes.present_ids)} present, "
            f"{len(changes.absent_ids)} absent"
        )
        return changes

    # -------- views --------

    def visible(self, search: Optional[str] = None) -> Roster:
        """Displayed attendees; search only applies in manual mode"""
        if self.mode == SessionMode.QR:
            return self.working
        return filter_roster(self.working, search)

    def to_dict(self, search: Optional[str] = None) -> Dict:
        entries = self.visible(search)
        present = sum(1 for e in self.working if e.is_attending)
        total = len(self.working)
        data = {
            "id": self.id,
            "state": self.state.value,
            "mode": self.mode.value,
            "dirty": self.dirty,
            "event": self.event.model_dump(mode="json") if self.event else None,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "present_count": present,
            "total_count": total,
            "attendance_rate": round(present / total * 100) if total else 0,
            "error": self.failure.message if self.failure else None,
            "error_code": self.failure.error_code if self.failure else None,
            "last_save_error": self.last_save_error,
            "attendees": [
                {
                    "id": e.id,
                    "name": e.name,
                    "email": e.email,
                    "group_id": e.group_id,
                    "group_name": e.group_name,
                    "is_attending": e.is_attending,
                    "checked_in_at": e.checked_in_at.isoformat() if e.checked_in_at else None,
                    "checked_in_by": e.checked_in_by,
                }
                for e in entries
            ],
        }
        if self.mode == SessionMode.MANUAL and search:
            filtered_present = sum(1 for e in entries if e.is_attending)
            data["filtered_present_count"] = filtered_present
            data["filtered_total_count"] = len(entries)
        return data


class AttendanceSessionManager:
    """In-memory registry of open attendance sessions.

    Sessions idle for longer than ``ttl`` are dropped the next time the
    registry is used.
    """

    def __init__(self, ttl: Optional[timedelta] = None, clock: Callable[[], datetime] = utcnow):
        self.sessions: Dict[str, AttendanceSession] = {}
        self.ttl = ttl or timedelta(minutes=settings.ATTENDANCE_SESSION_TTL_MINUTES)
        self.clock = clock

    def _purge_idle(self) -> None:
        cutoff = self.clock() - self.ttl
        idle = [sid for sid, s in self.sessions.items() if s.last_active < cutoff]
        for sid in idle:
            del self.sessions[sid]
        if idle:
            logger.info(f"Expired {len(idle)} idle attendance sessions")

    def open(self, operator: str, owner_id: Optional[str] = None) -> AttendanceSession:
        self._purge_idle()
        session = AttendanceSession(operator=operator, owner_id=owner_id, clock=self.clock)
        self.sessions[session.id] = session
        return session

    def get(self, session_id: str, owner_id: Optional[str] = None) -> AttendanceSession:
        self._purge_idle()
        session = self.sessions.get(session_id)
        if not session or (owner_id is not None and session.owner_id != owner_id):
            raise SessionNotFound(session_id)
        session.last_active = self.clock()
        return session

    def close(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def close_owned_by(self, owner_id: str) -> int:
        owned = [sid for sid, s in self.sessions.items() if s.owner_id == owner_id]
        for sid in owned:
            del self.sessions[sid]
        if owned:
            logger.info(f"Closed {len(owned)} attendance sessions on sign-out")
        return len(owned)


# Global session registry
session_manager = AttendanceSessionManager()
