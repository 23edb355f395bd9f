"""
Pytest fixtures and test configuration for splitsync tests.
"""

from collections import defaultdict
from datetime import datetime, timezone

import pytest

from splitsync.storage import IdMappingStore, SQLiteStore, User
from splitsync.types import EntityType, SyncStatus

T0 = "2024-01-01T10:00:00+00:00"


class FakeRemote:
    """In-memory RemoteService that records every call.

    ``fail(method, error, match)`` makes ``method`` raise ``error`` whenever
    ``match(*args)`` is true (always, when no match is given).
    """

    def __init__(self):
        self.calls = []
        self.server = defaultdict(dict)
        self.changes = defaultdict(list)
        self.preferences = {}
        self.transactions = {"transactions": [], "accounts_needing_reauthentication": []}
        self.healthy = True
        self.on_call = None
        self._next_id = 1000
        self._failures = []

    def fail(self, method, error, match=None):
        self._failures.append((method, error, match))

    def clear_failures(self):
        self._failures = []

    def calls_to(self, method):
        return [c for c in self.calls if c[0] == method]

    def _call(self, method, *args):
        self.calls.append((method,) + args)
        if self.on_call is not None:
            self.on_call(method, *args)
        for name, error, match in self._failures:
            if name == method and (match is None or match(*args)):
                raise error

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def create(self, entity_type, payload, parent_id=None):
        self._call("create", entity_type, payload, parent_id)
        remote_id = self._new_id()
        stored = dict(payload, id=remote_id)
        self.server[entity_type][remote_id] = stored
        return stored

    def update(self, entity_type, remote_id, payload, parent_id=None):
        self._call("update", entity_type, remote_id, payload, parent_id)
        self.server[entity_type][remote_id] = dict(payload)
        return dict(payload)

    def delete(self, entity_type, remote_id, parent_id=None):
        self._call("delete", entity_type, remote_id, parent_id)
        self.server[entity_type].pop(remote_id, None)

    def list_since(self, entity_type, since, user_id=None):
        self._call("list_since", entity_type, since, user_id)
        return [dict(w) for w in self.changes[entity_type]]

    def create_split(self, payment_id, payload):
        self._call("create_split", payment_id, payload)
        remote_id = self._new_id()
        stored = dict(payload, id=remote_id)
        self.server[EntityType.PAYMENT_SPLITS][remote_id] = stored
        return stored

    def update_split(self, payment_id, split_id, payload):
        self._call("update_split", payment_id, split_id, payload)
        return dict(payload)

    def delete_split(self, payment_id, split_id):
        self._call("delete_split", payment_id, split_id)

    def archive_group(self, group_id, user_id):
        self._call("archive_group", group_id, user_id)
        return {}

    def unarchive_group(self, group_id, user_id):
        self._call("unarchive_group", group_id, user_id)

    def get_preference(self, key):
        self._call("get_preference", key)
        return self.preferences.get(key)

    def update_preference(self, key, value):
        self._call("update_preference", key, value)
        pref = self.preferences.setdefault(key, {"id": self._new_id(), "preference_key": key})
        pref["preference_value"] = value
        return dict(pref)

    def update_needs_reauthentication(self, account_id, needs_reauthentication):
        self._call("update_needs_reauthentication", account_id, needs_reauthentication)

    def fetch_my_transactions(self):
        self._call("fetch_my_transactions")
        return self.transactions

    def health(self):
        self._call("health")
        return self.healthy


class Clock:
    """Settable clock for cooldown and cursor tests."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def store(temp_db):
    """Create a SQLiteStore instance for testing."""
    store = SQLiteStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def id_map(store):
    return IdMappingStore(store)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def synced(store, id_map):
    """Insert a record as already synced with the given remote id."""

    def _synced(record, remote_id, updated_at=T0):
        record.remote_id = remote_id
        record.sync_status = SyncStatus.SYNCED
        record.updated_at = updated_at
        store.insert(record)
        id_map.save(record.entity_type, record.local_id, remote_id)
        return record

    return _synced


@pytest.fixture
def session_user(synced):
    """The signed-in user, already known to the server as remote id 1."""
    return synced(User(username="alice", email="alice@example.com"), 1)
