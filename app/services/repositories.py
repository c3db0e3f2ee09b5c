"""
Repository layer abstracting storage (SQLAlchemy vs Firebase Firestore).

Both backends implement ``AttendanceRepository`` and hand back Pydantic
schemas, so the services never see ORM objects or raw documents.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from google.api_core.exceptions import GoogleAPIError
from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.errors import PersistenceError
from app.models import Attendee, Event, Group, UserRole
from app.schemas.attendee import AttendeeResponse, GroupDetail, GroupResponse
from app.schemas.event import EventCreate, EventDetail, EventResponse, EventStats
from app.services.firebase_client import get_firestore_client

logger = logging.getLogger(__name__)

EVENT_FIELDS = ("name", "description", "event_date", "event_time", "location")
ATTENDEE_FIELDS = ("name", "email", "group_id", "role", "is_attending", "checked_in_at", "checked_in_by")


def use_firestore() -> bool:
    return settings.USE_FIREBASE is True


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def attendance_stamp(is_attending: bool, checked_in_by: Optional[str]) -> Dict[str, Any]:
    """Attendance flag with its timestamp/operator, set or cleared together"""
    return {
        "is_attending": is_attending,
        "checked_in_at": utcnow() if is_attending else None,
        "checked_in_by": checked_in_by if is_attending else None,
    }


class AttendanceRepository(ABC):
    """Data access for events, groups, attendees and user roles"""

    # -------- events --------

    @abstractmethod
    def list_events(self) -> List[EventDetail]: ...

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[EventResponse]: ...

    @abstractmethod
    def create_event(self, data: EventCreate) -> EventResponse: ...

    @abstractmethod
    def update_event(self, event_id: str, updates: Dict[str, Any]) -> Optional[EventResponse]: ...

    @abstractmethod
    def delete_event(self, event_id: str) -> bool: ...

    # -------- groups --------

    @abstractmethod
    def list_groups(self, event_id: str) -> List[GroupDetail]: ...

    @abstractmethod
    def get_group(self, group_id: str) -> Optional[GroupResponse]: ...

    @abstractmethod
    def find_group_by_name(self, event_id: str, name: str) -> Optional[GroupResponse]: ...

    @abstractmethod
    def create_group(self, event_id: str, name: str, email: str) -> GroupResponse: ...

    # -------- attendees --------

    @abstractmethod
    def list_event_attendees(self, event_id: str) -> List[AttendeeResponse]: ...

    @abstractmethod
    def list_group_attendees(self, event_id: str, group_id: str) -> List[AttendeeResponse]: ...

    @abstractmethod
    def get_attendee(self, event_id: str, attendee_id: str) -> Optional[AttendeeResponse]: ...

    @abstractmethod
    def create_attendee(
        self,
        event_id: str,
        group_id: str,
        name: str,
        email: str,
        role: Optional[str] = None,
        is_attending: bool = False,
    ) -> AttendeeResponse: ...

    @abstractmethod
    def update_attendee(self, event_id: str, attendee_id: str, updates: Dict[str, Any]) -> Optional[AttendeeResponse]: ...

    @abstractmethod
    def delete_attendee(self, event_id: str, attendee_id: str) -> bool: ...

    @abstractmethod
    def mark_attendance(self, event_id: str, attendee_ids: List[str], is_attending: bool, checked_in_by: Optional[str]) -> None:
        """Batch-update the attendance flag of ``attendee_ids`` in one call"""

    # -------- user roles --------

    @abstractmethod
    def get_user_role(self, user_id: str) -> Optional[str]: ...

    @abstractmethod
    def upsert_user_role(self, user_id: str, role: str) -> None: ...

    @abstractmethod
    def list_user_roles(self) -> List[Dict[str, Any]]: ...

    # -------- derived --------

    def get_event_stats(self, event_id: str) -> EventStats:
        attendees = self.list_event_attendees(event_id)
        total = len(attendees)
        checked_in = sum(1 for a in attendees if a.is_attending)
        rate = round(checked_in / total * 100) if total else 0
        return EventStats(total_attendees=total, checked_in=checked_in, attendance_rate=rate)


# -------- SQLAlchemy backend --------

class SqlRepository(AttendanceRepository):
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _read(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Failed {action}") from e

    @contextmanager
    def _write(self, action: str):
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Failed {action}") from e

    def _attendee_query(self):
        return self.db.query(Attendee).options(joinedload(Attendee.group))

    def list_events(self) -> List[EventDetail]:
        with self._read("listing events"):
            rows = self.db.query(
                Event,
                func.count(Attendee.id).label("attendee_count"),
                func.sum(case((Attendee.is_attending == True, 1), else_=0)).label("checked_in_count"),
            ).outerjoin(Attendee, Attendee.event_id == Event.id).group_by(Event.id).order_by(Event.event_date).all()

        return [
            EventDetail(
                **EventResponse.model_validate(event).model_dump(),
                attendee_count=attendee_count or 0,
                checked_in_count=checked_in_count or 0,
            )
            for event, attendee_count, checked_in_count in rows
        ]

    def get_event(self, event_id: str) -> Optional[EventResponse]:
        with self._read("fetching event"):
            event = self.db.query(Event).filter(Event.id == event_id).first()
        return EventResponse.model_validate(event) if event else None

    def create_event(self, data: EventCreate) -> EventResponse:
        event = Event(**data.model_dump())
        with self._write("creating event"):
            self.db.add(event)
        self.db.refresh(event)
        return EventResponse.model_validate(event)

    def update_event(self, event_id: str, updates: Dict[str, Any]) -> Optional[EventResponse]:
        with self._read("fetching event"):
            event = self.db.query(Event).filter(Event.id == event_id).first()
        if not event:
            return None
        with self._write("updating event"):
            for field, value in updates.items():
                if field in EVENT_FIELDS:
                    setattr(event, field, value)
        self.db.refresh(event)
        return EventResponse.model_validate(event)

    def delete_event(self, event_id: str) -> bool:
        with self._read("fetching event"):
            event = self.db.query(Event).filter(Event.id == event_id).first()
        if not event:
            return False
        with self._write("deleting event"):
            self.db.delete(event)
        return True

    def list_groups(self, event_id: str) -> List[GroupDetail]:
        with self._read("listing groups"):
            rows = self.db.query(
                Group,
                func.count(Attendee.id).label("attendee_count"),
                func.sum(case((Attendee.is_attending == True, 1), else_=0)).label("checked_in_count"),
            ).outerjoin(Attendee, Attendee.group_id == Group.id).filter(
                Group.event_id == event_id
            ).group_by(Group.id).order_by(Group.name).all()

        return [
            GroupDetail(
                **GroupResponse.model_validate(group).model_dump(),
                attendee_count=attendee_count or 0,
                checked_in_count=checked_in_count or 0,
            )
            for group, attendee_count, checked_in_count in rows
        ]

    def get_group(self, group_id: str) -> Optional[GroupResponse]:
        with self._read("fetching group"):
            group = self.db.query(Group).filter(Group.id == group_id).first()
        return GroupResponse.model_validate(group) if group else None

    def find_group_by_name(self, event_id: str, name: str) -> Optional[GroupResponse]:
        # Duplicate names can exist; the oldest group wins
        with self._read("finding group"):
            group = self.db.query(Group).filter(
                Group.event_id == event_id,
                Group.name == name
            ).order_by(Group.created_at, Group.id).first()
        return GroupResponse.model_validate(group) if group else None

    def create_group(self, event_id: str, name: str, email: str) -> GroupResponse:
        group = Group(event_id=event_id, name=name, email=email)
        with self._write("creating group"):
            self.db.add(group)
        self.db.refresh(group)
        return GroupResponse.model_validate(group)

    def list_event_attendees(self, event_id: str) -> List[AttendeeResponse]:
        with self._read("listing attendees"):
            attendees = self._attendee_query().filter(Attendee.event_id == event_id).order_by(Attendee.name).all()
            return [AttendeeResponse.model_validate(a) for a in attendees]

    def list_group_attendees(self, event_id: str, group_id: str) -> List[AttendeeResponse]:
        with self._read("listing group attendees"):
            attendees = self._attendee_query().filter(
                Attendee.event_id == event_id,
                Attendee.group_id == group_id
            ).order_by(Attendee.name).all()
            return [AttendeeResponse.model_validate(a) for a in attendees]

    def get_attendee(self, event_id: str, attendee_id: str) -> Optional[AttendeeResponse]:
        with self._read("fetching attendee"):
            attendee = self._attendee_query().filter(
                Attendee.id == attendee_id,
                Attendee.event_id == event_id
            ).first()
            return AttendeeResponse.model_validate(attendee) if attendee else None

    def create_attendee(self, event_id, group_id, name, email, role=None, is_attending=False) -> AttendeeResponse:
        attendee = Attendee(
            event_id=event_id,
            group_id=group_id,
            name=name,
            email=email,
            role=role,
            is_attending=is_attending,
        )
        with self._write("adding attendee"):
            self.db.add(attendee)
        with self._read("fetching attendee"):
            self.db.refresh(attendee)
            return AttendeeResponse.model_validate(attendee)

    def update_attendee(self, event_id: str, attendee_id: str, updates: Dict[str, Any]) -> Optional[AttendeeResponse]:
        with self._read("fetching attendee"):
            attendee = self.db.query(Attendee).filter(
                Attendee.id == attendee_id,
                Attendee.event_id == event_id
            ).first()
        if not attendee:
            return None
        with self._write("updating attendee"):
            for field, value in updates.items():
                if field in ATTENDEE_FIELDS:
                    setattr(attendee, field, value)
        with self._read("fetching attendee"):
            self.db.refresh(attendee)
            return AttendeeResponse.model_validate(attendee)

    def delete_attendee(self, event_id: str, attendee_id: str) -> bool:
        with self._read("fetching attendee"):
            attendee = self.db.query(Attendee).filter(
                Attendee.id == attendee_id,
                Attendee.event_id == event_id
            ).first()
        if not attendee:
            return False
        with self._write("removing attendee"):
            self.db.delete(attendee)
        return True

    def mark_attendance(self, event_id, attendee_ids, is_attending, checked_in_by) -> None:
        if not attendee_ids:
            return
        values = attendance_stamp(is_attending, checked_in_by)
        values["updated_at"] = utcnow()
        with self._write("updating attendance"):
            self.db.query(Attendee).filter(
                Attendee.event_id == event_id,
                Attendee.id.in_(attendee_ids)
            ).update(values, synchronize_session=False)

    def get_user_role(self, user_id: str) -> Optional[str]:
        with self._read("fetching user role"):
            row = self.db.query(UserRole).filter(UserRole.user_id == user_id).first()
        return row.role if row else None

    def upsert_user_role(self, user_id: str, role: str) -> None:
        with self._read("fetching user role"):
            row = self.db.query(UserRole).filter(UserRole.user_id == user_id).first()
        with self._write("saving user role"):
            if row:
                row.role = role
            else:
                self.db.add(UserRole(user_id=user_id, role=role))

    def list_user_roles(self) -> List[Dict[str, Any]]:
        with self._read("listing user roles"):
            rows = self.db.query(UserRole).order_by(UserRole.created_at.desc()).all()
        return [{"user_id": r.user_id, "role": r.role} for r in rows]


# -------- Firestore backend --------
# Shape: events/{event_id}, events/{event_id}/groups/{group_id},
# events/{event_id}/attendees/{attendee_id}, user_roles/{user_id}

class FirestoreRepository(AttendanceRepository):
    def __init__(self, client=None):
        self.fs = client or get_firestore_client()

    @contextmanager
    def _call(self, action: str):
        try:
            yield
        except GoogleAPIError as e:
            logger.error(f"Firestore error {action}: {e}")
            raise PersistenceError(f"Failed {action}") from e

    def _event_ref(self, event_id: str):
        return self.fs.collection("events").document(event_id)

    @staticmethod
    def _doc(doc) -> Dict[str, Any]:
        data = doc.to_dict()
        data["id"] = doc.id
        return data

    def _groups_by_id(self, event_id: str) -> Dict[str, Dict[str, Any]]:
        docs = self._event_ref(event_id).collection("groups").get()
        return {d.id: self._doc(d) for d in docs}

    def _join(self, attendee: Dict[str, Any], groups: Dict[str, Dict[str, Any]]) -> AttendeeResponse:
        group = groups.get(attendee.get("group_id"), {})
        return AttendeeResponse(**attendee, group_name=group.get("name"), group_email=group.get("email"))

    def list_events(self) -> List[EventDetail]:
        with self._call("listing events"):
            docs = self.fs.collection("events").order_by("event_date").get()
            results = []
            for d in docs:
                attendees = [a.to_dict() for a in d.reference.collection("attendees").get()]
                results.append(EventDetail(
                    **self._doc(d),
                    attendee_count=len(attendees),
                    checked_in_count=sum(1 for a in attendees if a.get("is_attending")),
                ))
            return results

    def get_event(self, event_id: str) -> Optional[EventResponse]:
        with self._call("fetching event"):
            doc = self._event_ref(event_id).get()
            return EventResponse(**self._doc(doc)) if doc.exists else None

    def create_event(self, data: EventCreate) -> EventResponse:
        event_id = str(uuid.uuid4())
        payload = data.model_dump()
        payload["created_at"] = utcnow()
        with self._call("creating event"):
            self._event_ref(event_id).set(payload)
        return EventResponse(id=event_id, **data.model_dump())

    def update_event(self, event_id: str, updates: Dict[str, Any]) -> Optional[EventResponse]:
        if self.get_event(event_id) is None:
            return None
        values = {k: v for k, v in updates.items() if k in EVENT_FIELDS}
        values["updated_at"] = utcnow()
        with self._call("updating event"):
            self._event_ref(event_id).set(values, merge=True)
        return self.get_event(event_id)

    def delete_event(self, event_id: str) -> bool:
        if self.get_event(event_id) is None:
            return False
        with self._call("deleting event"):
            ref = self._event_ref(event_id)
            batch = self.fs.batch()
            for sub in ("attendees", "groups"):
                for d in ref.collection(sub).get():
                    batch.delete(d.reference)
            batch.delete(ref)
            batch.commit()
        return True

    def list_groups(self, event_id: str) -> List[GroupDetail]:
        with self._call("listing groups"):
            groups = self._groups_by_id(event_id)
            attendees = [a.to_dict() for a in self._event_ref(event_id).collection("attendees").get()]
        results = []
        for group in sorted(groups.values(), key=lambda g: g.get("name") or ""):
            members = [a for a in attendees if a.get("group_id") == group["id"]]
            results.append(GroupDetail(
                **group,
                attendee_count=len(members),
                checked_in_count=sum(1 for a in members if a.get("is_attending")),
            ))
        return results

    def get_group(self, group_id: str) -> Optional[GroupResponse]:
        with self._call("fetching group"):
            docs = self.fs.collection_group("groups").where("id", "==", group_id).limit(1).get()
        return GroupResponse(**docs[0].to_dict()) if docs else None

    def find_group_by_name(self, event_id: str, name: str) -> Optional[GroupResponse]:
        with self._call("finding group"):
            docs = self._event_ref(event_id).collection("groups").where("name", "==", name).get()
        if not docs:
            return None
        oldest = min(docs, key=lambda d: d.to_dict().get("created_at") or utcnow())
        return GroupResponse(**self._doc(oldest))

    def create_group(self, event_id: str, name: str, email: str) -> GroupResponse:
        group_id = str(uuid.uuid4())
        data = {"id": group_id, "event_id": event_id, "name": name, "email": email, "created_at": utcnow()}
        with self._call("creating group"):
            self._event_ref(event_id).collection("groups").document(group_id).set(data)
        return GroupResponse(**data)

    def list_event_attendees(self, event_id: str) -> List[AttendeeResponse]:
        with self._call("listing attendees"):
            groups = self._groups_by_id(event_id)
            docs = self._event_ref(event_id).collection("attendees").get()
        attendees = [self._join(self._doc(d), groups) for d in docs]
        return sorted(attendees, key=lambda a: a.name)

    def list_group_attendees(self, event_id: str, group_id: str) -> List[AttendeeResponse]:
        with self._call("listing group attendees"):
            groups = self._groups_by_id(event_id)
            docs = self._event_ref(event_id).collection("attendees").where("group_id", "==", group_id).get()
        attendees = [self._join(self._doc(d), groups) for d in docs]
        return sorted(attendees, key=lambda a: a.name)

    def get_attendee(self, event_id: str, attendee_id: str) -> Optional[AttendeeResponse]:
        with self._call("fetching attendee"):
            doc = self._event_ref(event_id).collection("attendees").document(attendee_id).get()
            if not doc.exists:
                return None
            return self._join(self._doc(doc), self._groups_by_id(event_id))

    def create_attendee(self, event_id, group_id, name, email, role=None, is_attending=False) -> AttendeeResponse:
        attendee_id = str(uuid.uuid4())
        data = {
            "event_id": event_id,
            "group_id": group_id,
            "name": name,
            "email": email,
            "role": role,
            "is_attending": is_attending,
            "checked_in_at": None,
            "checked_in_by": None,
            "created_at": utcnow(),
        }
        with self._call("adding attendee"):
            self._event_ref(event_id).collection("attendees").document(attendee_id).set(data)
        return self.get_attendee(event_id, attendee_id)

    def update_attendee(self, event_id: str, attendee_id: str, updates: Dict[str, Any]) -> Optional[AttendeeResponse]:
        if self.get_attendee(event_id, attendee_id) is None:
            return None
        values = {k: v for k, v in updates.items() if k in ATTENDEE_FIELDS}
        values["updated_at"] = utcnow()
        with self._call("updating attendee"):
            self._event_ref(event_id).collection("attendees").document(attendee_id).set(values, merge=True)
        return self.get_attendee(event_id, attendee_id)

    def delete_attendee(self, event_id: str, attendee_id: str) -> bool:
        if self.get_attendee(event_id, attendee_id) is None:
            return False
        with self._call("removing attendee"):
            self._event_ref(event_id).collection("attendees").document(attendee_id).delete()
        return True

    def mark_attendance(self, event_id, attendee_ids: Iterable[str], is_attending, checked_in_by) -> None:
        attendee_ids = list(attendee_ids)
        if not attendee_ids:
            return
        values = attendance_stamp(is_attending, checked_in_by)
        values["updated_at"] = utcnow()
        with self._call("updating attendance"):
            batch = self.fs.batch()
            attendees = self._event_ref(event_id).collection("attendees")
            for attendee_id in attendee_ids:
                batch.update(attendees.document(attendee_id), values)
            batch.commit()

    def get_user_role(self, user_id: str) -> Optional[str]:
        with self._call("fetching user role"):
            doc = self.fs.collection("user_roles").document(user_id).get()
        return doc.to_dict().get("role") if doc.exists else None

    def upsert_user_role(self, user_id: str, role: str) -> None:
        with self._call("saving user role"):
            self.fs.collection("user_roles").document(user_id).set(
                {"user_id": user_id, "role": role, "updated_at": utcnow()}, merge=True
            )

    def list_user_roles(self) -> List[Dict[str, Any]]:
        with self._call("listing user roles"):
            docs = self.fs.collection("user_roles").get()
        return [{"user_id": d.id, "role": d.to_dict().get("role")} for d in docs]


def get_repository(db: Session) -> AttendanceRepository:
    """Pick the configured backend; the SQL session is ignored for Firestore"""
    if use_firestore():
        return FirestoreRepository()
    return SqlRepository(db)
