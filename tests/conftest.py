# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import bcrypt
import jwt
import pytest
from unittest.mock import MagicMock

from clinic_core.config.settings import ClinicSettings
from clinic_core.offline.local_database import LocalDatabase
from clinic_core.state.session import TabStorage
from clinic_core.state.typed_state import CredentialRecord, Session


NOW = 1_700_000_000.0


# =============================================================================
# HELPERS
# =============================================================================

TOKEN_SECRET = "server-side-secret-the-client-never-sees"


def make_token(claims):
    """JWT carrying `claims`, signed with a key the client does not know."""
    return jwt.encode(claims, TOKEN_SECRET, algorithm="HS256")


def fast_hash(password):
    """bcrypt hash with the minimum cost factor to keep tests quick."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("ascii")


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeChangeFeed:
    """In-memory change feed: tests push events through `emit`."""

    def __init__(self):
        self.subscriptions = {}
        self.unsubscribed = []
        self.auth_tokens = []
        self._next = 0

    def subscribe(self, table, callback, tenant_id=None):
        self._next += 1
        handle = (table, self._next)
        self.subscriptions[handle] = (callback, tenant_id)
        return handle

    def unsubscribe(self, handle):
        self.subscriptions.pop(handle, None)
        self.unsubscribed.append(handle)

    def set_auth(self, token):
        self.auth_tokens.append(token)

    def callbacks_for(self, table):
        return [cb for (t, _), (cb, _) in self.subscriptions.items() if t == table]

    def emit(self, event):
        for callback in self.callbacks_for(event.table):
            callback(event)


class FakeLoader:
    """Bulk loader returning a fixed dataset, or raising a given error."""

    def __init__(self, dataset=None, error=None):
        self.dataset = dataset
        self.error = error
        self.calls = []

    def load_all(self, tenant_id=None):
        self.calls.append(tenant_id)
        if self.error is not None:
            raise self.error
        return self.dataset


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return ClinicSettings(
        api_base_url="https://clinic.test",
        local_db_path=tmp_path / "clinic.db",
    )


@pytest.fixture
def storage():
    """Tab storage backed by a plain dict."""
    return TabStorage({})


@pytest.fixture
def local_db(tmp_path):
    db = LocalDatabase(tmp_path / "clinic.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def feed():
    return FakeChangeFeed()


@pytest.fixture
def make_session(clock):
    def _make(role="admin", stores=("StoreA",), name="Alice", **overrides):
        data = dict(
            user_id=overrides.pop("user_id", f"u-{name.lower()}"),
            username=name.lower(),
            display_name=name,
            role=role,
            assigned_stores=frozenset(stores),
            tenant_id="t1",
            last_activity_at=clock(),
        )
        data.update(overrides)
        return Session(**data)
    return _make


@pytest.fixture
def add_credential(local_db):
    def _add(username, password=None, role="staff", stores=("StoreA",), active=True, password_hash=None):
        record = CredentialRecord(
            username=username,
            password_hash=password_hash if password_hash is not None else fast_hash(password),
            role=role,
            assigned_stores=frozenset(stores),
            active=active,
            user_id=f"u-{username}",
            display_name=username.title(),
            tenant_id="t1",
        )
        local_db.upsert_credential(record)
        return record
    return _add


@pytest.fixture
def sample_dataset():
    return {
        "revenue": [
            {"id": "r1", "store": "StoreA", "doctor": "Dr Lee", "amount": 300},
            {"id": "r2", "store": "StoreB", "doctor": "Dr Wong", "amount": 450},
            {"id": "r3", "store": "shared", "doctor": "Dr Lee", "amount": 120},
        ],
        "expenses": [
            {"id": "e1", "store": "StoreA", "amount": 80},
            {"id": "e2", "store": "StoreB", "amount": 95},
        ],
        "patients": [
            {"id": "p1", "store": "StoreA", "doctor": "Dr Lee", "name": "Chan"},
            {"id": "p2", "store": "StoreB", "doctor": "Dr Wong", "name": "Ho"},
        ],
        "bookings": [
            {"id": "b1", "store": "StoreB", "doctor": "Dr Lee"},
        ],
        "inventory": [{"id": "i1", "name": "Ginseng"}],
        "arap": [{"id": "a1", "amount": 1000}],
        "payslips": [{"id": "s1", "staff": "Alice", "net": 18000}],
    }


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.range.return_value.execute.return_value.data = []
    mock_client.table.return_value.select.return_value.eq.return_value.range.return_value.execute.return_value.data = []
    return mock_client


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def hasher():
    return fast_hash


@pytest.fixture
def loader_factory():
    return FakeLoader
