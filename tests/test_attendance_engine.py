"""
Tests for attendance sessions: loading, local toggling and diff-based saving
"""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.core.errors import (
    AttendeeNotFound,
    InvalidSessionState,
    PersistenceError,
    SessionNotFound,
)
from app.models import Attendee, Event, Group
from app.services.attendance_service import (
    AttendanceEntry,
    AttendanceSession,
    AttendanceSessionManager,
    SessionMode,
    SessionState,
    diff,
    toggle,
)
from app.schemas.attendee import AttendeeResponse
from app.schemas.event import EventResponse
from app.services.qr_service import encode_qr_payload
from app.services.repositories import AttendanceRepository, SqlRepository, attendance_stamp

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_attendance_engine.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2025, 3, 1, 18, 30, tzinfo=timezone.utc)


class RecordingRepository(SqlRepository):
    """Counts batch attendance writes"""

    def __init__(self, db):
        super().__init__(db)
        self.calls = []

    def mark_attendance(self, event_id, attendee_ids, is_attending, checked_in_by):
        self.calls.append((sorted(attendee_ids), is_attending, checked_in_by))
        super().mark_attendance(event_id, attendee_ids, is_attending, checked_in_by)


class FailingRepository(SqlRepository):
    def mark_attendance(self, event_id, attendee_ids, is_attending, checked_in_by):
        raise PersistenceError("Failed updating attendance")


@pytest.fixture
def db_session():
    """Create test database session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repo(db_session):
    return RecordingRepository(db_session)


@pytest.fixture
def sample_event(db_session):
    """Event with a two-person family group and a single-person group"""
    event = Event(name="Spring Gala", event_date=datetime(2025, 3, 1), location="Main Hall")
    db_session.add(event)
    db_session.flush()

    smith = Group(event_id=event.id, name="Smith Family", email="alice@example.com")
    jones = Group(event_id=event.id, name="Carol Jones", email="carol@example.com")
    db_session.add_all([smith, jones])
    db_session.flush()

    db_session.add_all([
        Attendee(event_id=event.id, group_id=smith.id, name="Alice Smith", email="alice@example.com"),
        Attendee(event_id=event.id, group_id=smith.id, name="Bob Smith", email="bob@example.com"),
        Attendee(
            event_id=event.id,
            group_id=jones.id,
            name="Carol Jones",
            email="carol@example.com",
            is_attending=True,
            checked_in_at=datetime(2025, 3, 1, 18, 0),
            checked_in_by="Door Staff",
        ),
    ])
    db_session.commit()

    return {"event_id": event.id, "smith_id": smith.id, "jones_id": jones.id}


def _ids_by_name(session):
    return {entry.name: entry.id for entry in session.working}


def _open(repo, **kwargs):
    session = AttendanceSession(operator="Gate A", clock=lambda: NOW)
    session.load(repo, **kwargs)
    return session


def test_manual_load_lists_whole_event(repo, sample_event):
    """Manual mode loads every attendee of the event"""
    session = _open(repo, event_id=sample_event["event_id"])

    assert session.state == SessionState.READY
    assert session.mode == SessionMode.MANUAL
    assert len(session.working) == 3
    assert session.dirty is False
    assert session.event.name == "Spring Gala"


def test_toggle_only_changes_local_copy(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    alice_id = _ids_by_name(session)["Alice Smith"]

    entry = session.toggle(alice_id)

    assert entry.is_attending is True
    assert entry.checked_in_by == "Gate A"
    assert entry.checked_in_at == NOW
    assert session.dirty is True
    assert repo.calls == []
    assert repo.get_attendee(sample_event["event_id"], alice_id).is_attending is False


def test_toggle_twice_saves_nothing(repo, sample_event):
    """Toggling back to the saved value leaves an empty diff"""
    session = _open(repo, event_id=sample_event["event_id"])
    alice_id = _ids_by_name(session)["Alice Smith"]

    session.toggle(alice_id)
    session.toggle(alice_id)
    changes = session.save(repo)

    assert changes.is_empty
    assert repo.calls == []
    assert session.dirty is False


def test_save_issues_at_most_two_batches(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    ids = _ids_by_name(session)

    session.toggle(ids["Alice Smith"])
    session.toggle(ids["Bob Smith"])
    session.toggle(ids["Carol Jones"])
    changes = session.save(repo)

    assert sorted(changes.present_ids) == sorted([ids["Alice Smith"], ids["Bob Smith"]])
    assert changes.absent_ids == (ids["Carol Jones"],)
    assert repo.calls == [
        (sorted([ids["Alice Smith"], ids["Bob Smith"]]), True, "Gate A"),
        ([ids["Carol Jones"]], False, None),
    ]

    carol = repo.get_attendee(sample_event["event_id"], ids["Carol Jones"])
    assert carol.is_attending is False
    assert carol.checked_in_at is None
    assert carol.checked_in_by is None

    alice = repo.get_attendee(sample_event["event_id"], ids["Alice Smith"])
    assert alice.is_attending is True
    assert alice.checked_in_by == "Gate A"
    assert alice.checked_in_at is not None


def test_save_resets_baseline(repo, sample_event):
    """A second save with no further edits writes nothing"""
    session = _open(repo, event_id=sample_event["event_id"])
    session.toggle(_ids_by_name(session)["Alice Smith"])
    session.save(repo)
    repo.calls.clear()

    changes = session.save(repo)

    assert changes.is_empty
    assert repo.calls == []


def test_mark_all_present_skips_already_present(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    ids = _ids_by_name(session)

    assert session.mark_all_present() is True
    session.save(repo)

    assert repo.calls == [(sorted([ids["Alice Smith"], ids["Bob Smith"]]), True, "Gate A")]
    carol = next(e for e in session.working if e.name == "Carol Jones")
    assert carol.checked_in_by == "Door Staff"


def test_clear_all_marks_everyone_absent(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    ids = _ids_by_name(session)

    session.clear_all()
    session.save(repo)

    assert repo.calls == [([ids["Carol Jones"]], False, None)]
    assert all(not e.is_attending for e in session.working)


def test_mark_all_on_all_present_is_not_dirty(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    session.mark_all_present()
    session.save(repo)

    assert session.mark_all_present() is False
    assert session.dirty is False


def test_toggle_unknown_attendee(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])

    with pytest.raises(AttendeeNotFound):
        session.toggle("no-such-attendee")
    assert session.dirty is False


def test_qr_load_limits_roster_to_group(repo, sample_event):
    qr_data = encode_qr_payload(sample_event["event_id"], sample_event["smith_id"])
    session = _open(repo, qr_data=qr_data)

    assert session.state == SessionState.READY
    assert session.mode == SessionMode.QR
    assert session.group_name == "Smith Family"
    assert sorted(e.name for e in session.working) == ["Alice Smith", "Bob Smith"]


def test_qr_mode_ignores_search(repo, sample_event):
    qr_data = encode_qr_payload(sample_event["event_id"], sample_event["smith_id"])
    session = _open(repo, qr_data=qr_data)

    assert len(session.visible("zzz")) == 2


def test_qr_mark_all_only_touches_group(repo, sample_event):
    qr_data = encode_qr_payload(sample_event["event_id"], sample_event["smith_id"])
    session = _open(repo, qr_data=qr_data)

    session.mark_all_present()
    session.save(repo)

    assert len(repo.calls) == 1
    assert len(repo.calls[0][0]) == 2
    stats = repo.get_event_stats(sample_event["event_id"])
    assert stats.checked_in == 3


def test_invalid_qr_fails_load(repo, sample_event):
    session = _open(repo, qr_data="not json")

    assert session.state == SessionState.FAILED
    assert session.failure.error_code == "InvalidQrFormat"
    assert session.working == ()

    with pytest.raises(InvalidSessionState):
        session.toggle("anything")


def test_qr_for_unknown_event_fails_load(repo, sample_event):
    session = _open(repo, qr_data=encode_qr_payload("missing-event", sample_event["smith_id"]))

    assert session.state == SessionState.FAILED
    assert session.failure.message == "Event not found"


def test_qr_for_empty_group_fails_load(repo, sample_event):
    session = _open(repo, qr_data=encode_qr_payload(sample_event["event_id"], "missing-group"))

    assert session.state == SessionState.FAILED
    assert session.failure.message == "No attendees found for this group"


def test_reload_retries_same_source(repo, sample_event, db_session):
    session = _open(repo, event_id=sample_event["event_id"])
    db_session.add(Attendee(
        event_id=sample_event["event_id"],
        group_id=sample_event["jones_id"],
        name="Dan Jones",
        email="dan@example.com",
    ))
    db_session.commit()

    session.reload(repo)

    assert session.state == SessionState.READY
    assert len(session.working) == 4


def test_rescan_discards_unsaved_changes(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])
    session.toggle(_ids_by_name(session)["Alice Smith"])

    session.rescan(repo, encode_qr_payload(sample_event["event_id"], sample_event["jones_id"]))

    assert session.mode == SessionMode.QR
    assert session.dirty is False
    assert [e.name for e in session.working] == ["Carol Jones"]
    assert repo.calls == []


def test_failed_save_keeps_changes_for_retry(db_session, sample_event):
    failing = FailingRepository(db_session)
    session = _open(failing, event_id=sample_event["event_id"])
    alice_id = _ids_by_name(session)["Alice Smith"]
    session.toggle(alice_id)

    with pytest.raises(PersistenceError):
        session.save(failing)

    assert session.state == SessionState.READY
    assert session.dirty is True
    assert session.last_save_error == "Failed updating attendance"

    repo = RecordingRepository(db_session)
    changes = session.save(repo)

    assert changes.present_ids == (alice_id,)
    assert session.dirty is False
    assert session.last_save_error is None


def test_manual_search_matches_name_email_and_group(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])

    assert sorted(e.name for e in session.visible("SMITH FAMILY")) == ["Alice Smith", "Bob Smith"]
    assert [e.name for e in session.visible("carol@")] == ["Carol Jones"]
    assert len(session.visible("")) == 3

    data = session.to_dict("smith")
    assert data["filtered_total_count"] == 2
    assert data["filtered_present_count"] == 0
    assert data["total_count"] == 3
    assert data["present_count"] == 1


def test_diff_is_keyed_by_id_not_position():
    a = AttendanceEntry(id="a", name="A", email="a@example.com", group_id="g", group_name="G", is_attending=False)
    b = AttendanceEntry(id="b", name="B", email="b@example.com", group_id="g", group_name="G", is_attending=True)
    baseline = (a, b)
    working = toggle((b, a), "a", "Gate A", NOW)

    changes = diff(baseline, working)

    assert changes.present_ids == ("a",)
    assert changes.absent_ids == ()


def test_session_manager_scopes_sessions_to_owner():
    manager = AttendanceSessionManager()
    mine = manager.open("Gate A", owner_id="user-1")
    manager.open("Gate B", owner_id="user-2")

    assert manager.get(mine.id, owner_id="user-1") is mine
    with pytest.raises(SessionNotFound):
        manager.get(mine.id, owner_id="user-2")

    assert manager.close_owned_by("user-1") == 1
    with pytest.raises(SessionNotFound):
        manager.get(mine.id)


class InMemoryRepository(AttendanceRepository):
    """Dict-backed store covering what attendance sessions read and write"""

    def __init__(self, event, attendees):
        self.event = event
        self.attendees = {a.id: a for a in attendees}
        self.calls = []

    def get_event(self, event_id):
        return self.event if event_id == self.event.id else None

    def list_event_attendees(self, event_id):
        return [a for a in self.attendees.values() if a.event_id == event_id]

    def list_group_attendees(self, event_id, group_id):
        return [a for a in self.list_event_attendees(event_id) if a.group_id == group_id]

    def mark_attendance(self, event_id, attendee_ids, is_attending, checked_in_by):
        self.calls.append((list(attendee_ids), is_attending, checked_in_by))
        for attendee_id in attendee_ids:
            current = self.attendees[attendee_id]
            self.attendees[attendee_id] = current.model_copy(update=attendance_stamp(is_attending, checked_in_by))

    def _unused(self, *args, **kwargs):
        raise NotImplementedError

    list_events = create_event = update_event = delete_event = _unused
    list_groups = get_group = find_group_by_name = create_group = _unused
    get_attendee = create_attendee = update_attendee = delete_attendee = _unused
    get_user_role = upsert_user_role = list_user_roles = _unused


@pytest.fixture
def memory_repo():
    event = EventResponse(id="e1", name="Board Meeting", event_date=datetime(2025, 7, 1))
    return InMemoryRepository(event, [
        AttendeeResponse(id="A", event_id="e1", group_id="g1", name="Ann", email="ann@example.com", group_name="Ann"),
        AttendeeResponse(id="B", event_id="e1", group_id="g1", name="Bo", email="bo@example.com", group_name="Ann"),
    ])


def test_single_toggle_saves_one_batch(memory_repo):
    session = _open(memory_repo, event_id="e1")

    session.toggle("A")
    session.save(memory_repo)

    assert memory_repo.calls == [(["A"], True, "Gate A")]
    assert memory_repo.attendees["A"].is_attending is True
    assert memory_repo.attendees["B"].is_attending is False


def test_mark_all_present_is_idempotent(memory_repo):
    session = _open(memory_repo, event_id="e1")

    session.mark_all_present()
    once = session.working
    session.mark_all_present()

    assert session.working == once


def test_clear_all_then_save_after_mark_all(memory_repo):
    session = _open(memory_repo, event_id="e1")
    session.mark_all_present()
    session.save(memory_repo)

    session.clear_all()
    session.save(memory_repo)

    assert memory_repo.calls[-1] == (["A", "B"], False, None)
    assert all(not a.is_attending for a in memory_repo.attendees.values())


def test_store_failure_during_load_marks_session_failed():
    """A read error from the store ends in FAILED instead of escaping"""
    empty_engine = create_engine("sqlite://")
    db = sessionmaker(bind=empty_engine)()
    try:
        session = _open(SqlRepository(db), event_id="e1")
    finally:
        db.close()

    assert session.state == SessionState.FAILED
    assert session.failure.error_code == "PersistenceError"
    assert session.failure.message == "Failed fetching event"


def test_failed_rescan_clears_previous_event(repo, sample_event):
    session = _open(repo, event_id=sample_event["event_id"])

    session.rescan(repo, "not json")

    assert session.state == SessionState.FAILED
    assert session.event is None
    assert session.to_dict()["event"] is None


def test_session_manager_expires_idle_sessions():
    now = [NOW]
    manager = AttendanceSessionManager(ttl=timedelta(minutes=30), clock=lambda: now[0])
    idle = manager.open("Gate A", owner_id="token-1")
    active = manager.open("Gate B", owner_id="token-2")

    now[0] = NOW + timedelta(minutes=20)
    manager.get(active.id)
    now[0] = NOW + timedelta(minutes=40)

    assert manager.get(active.id) is active
    with pytest.raises(SessionNotFound):
        manager.get(idle.id)
    assert idle.id not in manager.sessions
