"""
Tests for the Firestore repository against an in-memory document store
"""

import pytest
from datetime import datetime

from google.api_core.exceptions import NotFound

from app.core.errors import PersistenceError
from app.schemas.event import EventCreate
from app.services.repositories import FirestoreRepository


class FakeSnapshot:
    def __init__(self, store, path):
        self._store = store
        self.reference = FakeDocument(store, path)
        self.id = path[-1]
        self.exists = path in store

    def to_dict(self):
        return dict(self._store[self.reference.path]) if self.exists else None


class FakeDocument:
    def __init__(self, store, path):
        self.store = store
        self.path = path

    @property
    def id(self):
        return self.path[-1]

    def get(self):
        return FakeSnapshot(self.store, self.path)

    def set(self, data, merge=False):
        if merge and self.path in self.store:
            self.store[self.path].update(data)
        else:
            self.store[self.path] = dict(data)

    def update(self, data):
        if self.path not in self.store:
            raise NotFound(f"No document to update: {'/'.join(self.path)}")
        self.store[self.path].update(data)

    def delete(self):
        self.store.pop(self.path, None)

    def collection(self, name):
        return FakeCollection(self.store, self.path + (name,))


class FakeCollection:
    def __init__(self, store, path, filters=()):
        self.store = store
        self.path = path
        self.filters = filters

    def document(self, doc_id):
        return FakeDocument(self.store, self.path + (doc_id,))

    def where(self, field, op, value):
        assert op == "=="
        return FakeCollection(self.store, self.path, self.filters + ((field, value),))

    def order_by(self, field):
        return self

    def get(self):
        snapshots = [
            FakeSnapshot(self.store, path)
            for path in list(self.store)
            if len(path) == len(self.path) + 1 and path[:-1] == self.path
        ]
        return [
            s for s in snapshots
            if all(s.to_dict().get(field) == value for field, value in self.filters)
        ]


class FakeBatch:
    """Applies all writes on commit, or none if any update targets a missing document"""

    def __init__(self, store):
        self.store = store
        self.ops = []

    def set(self, ref, data, merge=False):
        self.ops.append(("set", ref, data, merge))

    def update(self, ref, data):
        self.ops.append(("update", ref, data, None))

    def delete(self, ref):
        self.ops.append(("delete", ref, None, None))

    def commit(self):
        for kind, ref, _, _ in self.ops:
            if kind == "update" and ref.path not in self.store:
                raise NotFound(f"No document to update: {'/'.join(ref.path)}")
        for kind, ref, data, merge in self.ops:
            if kind == "set":
                ref.set(data, merge=merge)
            elif kind == "update":
                ref.update(data)
            else:
                ref.delete()


class FakeFirestore:
    def __init__(self):
        self.store = {}

    def collection(self, name):
        return FakeCollection(self.store, (name,))

    def batch(self):
        return FakeBatch(self.store)


@pytest.fixture
def client():
    return FakeFirestore()

@pytest.fixture
def repo(client):
    return FirestoreRepository(client=client)

@pytest.fixture
def populated(repo):
    event = repo.create_event(EventCreate(name="Alumni Night", event_date=datetime(2025, 10, 3)))
    group = repo.create_group(event.id, "Rita Moss", "rita@example.com")
    rita = repo.create_attendee(event.id, group.id, "Rita Moss", "rita@example.com")
    sam = repo.create_attendee(event.id, group.id, "Sam Moss", "sam@example.com")
    return {"event": event, "group": group, "rita": rita, "sam": sam}

def test_attendees_joined_with_group(repo, populated):
    attendees = repo.list_event_attendees(populated["event"].id)

    assert [a.name for a in attendees] == ["Rita Moss", "Sam Moss"]
    assert attendees[0].group_name == "Rita Moss"
    assert attendees[0].group_email == "rita@example.com"

def test_mark_attendance_updates_existing_documents(repo, populated):
    event_id = populated["event"].id

    repo.mark_attendance(event_id, [populated["rita"].id], True, "Front Desk")

    rita = repo.get_attendee(event_id, populated["rita"].id)
    assert rita.is_attending is True
    assert rita.checked_in_by == "Front Desk"
    assert repo.get_event_stats(event_id).checked_in == 1

def test_mark_attendance_for_removed_attendee_fails_cleanly(repo, populated):
    """A deleted attendee is never recreated as a partial document"""
    event_id = populated["event"].id
    repo.delete_attendee(event_id, populated["sam"].id)

    with pytest.raises(PersistenceError):
        repo.mark_attendance(event_id, [populated["rita"].id, populated["sam"].id], True, "Front Desk")

    attendees = repo.list_event_attendees(event_id)
    assert [a.name for a in attendees] == ["Rita Moss"]
    assert attendees[0].is_attending is False

def test_find_group_by_name(repo, populated):
    event_id = populated["event"].id

    assert repo.find_group_by_name(event_id, "Rita Moss").id == populated["group"].id
    assert repo.find_group_by_name(event_id, "Nobody") is None

def test_delete_event_removes_subcollections(repo, client, populated):
    assert repo.delete_event(populated["event"].id) is True

    assert client.store == {}
    assert repo.delete_event(populated["event"].id) is False

def test_user_roles(repo):
    repo.upsert_user_role("uid-3", "admin")

    assert repo.get_user_role("uid-3") == "admin"
    assert repo.get_user_role("uid-4") is None
    assert repo.list_user_roles() == [{"user_id": "uid-3", "role": "admin"}]
