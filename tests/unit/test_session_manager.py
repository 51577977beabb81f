# =============================================================================
# tests/unit/test_session_manager.py
# Unit Tests for the Session Manager
# =============================================================================

from unittest.mock import MagicMock

import pytest

from clinic_core.auth.authentication import LocalVerified, Rejected, RejectReason, RemoteVerified
from clinic_core.auth.session_manager import SessionManager
from clinic_core.errors.exceptions import RemoteUnavailableError
from clinic_core.state.session import SESSION_KEY, TENANT_KEY
from clinic_core.state.typed_state import SessionStatus, TenantConfig

IDLE = 30 * 60


class StubVerifier:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def verify(self, username, password):
        self.calls.append(username)
        return self.result


@pytest.fixture
def manager_factory(storage, settings, clock):
    def _make(result):
        return SessionManager(StubVerifier(result), storage, settings, clock=clock)
    return _make


@pytest.fixture
def online_session(make_session, token_factory, clock):
    return make_session(
        role="manager",
        token=token_factory({"exp": clock() + 8 * 3600}),
        token_expires_at=clock() + 8 * 3600,
    )


class TestLogin:
    def test_online_login(self, manager_factory, online_session, storage):
        tenant = TenantConfig(tenant_id="t1", name="Hong Ching")
        manager = manager_factory(RemoteVerified(online_session, tenant))

        manager.login("alice", "pw")

        assert manager.status is SessionStatus.ACTIVE_ONLINE
        assert manager.get_current_session().token == online_session.token
        assert manager.tenant_config().name == "Hong Ching"
        assert storage.get(TENANT_KEY)["name"] == "Hong Ching"

    def test_offline_login(self, manager_factory, make_session):
        manager = manager_factory(LocalVerified(make_session(role="staff")))
        manager.login("alice", "pw")
        assert manager.status is SessionStatus.ACTIVE_OFFLINE
        assert manager.tenant_config() is None

    def test_rejected_login_stays_logged_out(self, manager_factory, storage):
        manager = manager_factory(Rejected(RejectReason.INVALID_CREDENTIALS))
        result = manager.login("alice", "bad")
        assert isinstance(result, Rejected)
        assert manager.status is SessionStatus.LOGGED_OUT
        assert SESSION_KEY not in storage

    def test_login_stamps_activity(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session(last_activity_at=0.0)))
        manager.login("alice", "pw")
        assert manager.get_current_session().last_activity_at == clock()

    def test_login_replaces_existing_session(self, manager_factory, make_session):
        manager = manager_factory(LocalVerified(make_session(name="Alice")))
        reasons = []
        manager.register_logout_callback(reasons.append)
        manager.login("alice", "pw")

        manager._verifier.result = LocalVerified(make_session(name="Bob"))
        manager.login("bob", "pw")

        assert reasons == ["replaced"]
        assert manager.get_current_session().display_name == "Bob"


class TestFailClosedReads:
    def test_idle_session_is_destroyed_on_read(self, manager_factory, make_session, clock, storage):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")

        clock.advance(IDLE + 1)

        assert manager.get_current_session() is None
        assert SESSION_KEY not in storage
        assert not manager.has_capability("viewDashboard")

    def test_stale_end_is_recorded(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        clock.advance(IDLE + 1)

        manager.get_current_session()

        assert manager.last_ended.details["reason"] == "idle_timeout"
        manager.login("alice", "pw")
        assert manager.last_ended is None

    def test_exactly_at_threshold_still_valid(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        clock.advance(IDLE)
        assert manager.get_current_session() is not None

    def test_expired_token_ends_session(self, manager_factory, make_session, token_factory, clock):
        session = make_session(token=token_factory({}), token_expires_at=clock() + 600)
        manager = manager_factory(RemoteVerified(session))
        manager.login("alice", "pw")
        reasons = []
        manager.register_logout_callback(reasons.append)

        clock.advance(600)

        assert manager.get_current_session() is None
        assert reasons == ["token_expired"]

    def test_token_without_expiry_fails_closed(self, manager_factory, make_session):
        session = make_session(token="opaque", token_expires_at=None)
        manager = manager_factory(LocalVerified(session))
        manager.login("alice", "pw")
        assert manager.get_current_session() is None

    def test_offline_session_skips_token_checks(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        clock.advance(IDLE - 1)
        assert manager.get_current_session() is not None

    def test_malformed_stored_session_is_purged(self, manager_factory, storage):
        manager = manager_factory(None)
        seen = []
        manager.register_logout_callback(lambda reason: seen.append((reason, SESSION_KEY in storage)))
        storage.set(SESSION_KEY, {"username": "x"})

        assert manager.get_current_session() is None
        assert SESSION_KEY not in storage
        # Teardown runs exactly as for any other logout
        assert seen == [("corrupt", False)]
        assert manager.get_current_session() is None
        assert seen == [("corrupt", False)]


class TestActivity:
    def test_touch_extends_idle_window(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")

        for _ in range(3):
            clock.advance(IDLE - 60)
            manager.touch_activity()

        assert manager.get_current_session() is not None

    def test_touch_is_idempotent(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        clock.advance(10)
        manager.touch_activity()
        first = manager.get_current_session()
        manager.touch_activity()
        manager.touch_activity()
        assert manager.get_current_session() == first

    def test_touch_does_not_revive_stale_session(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        clock.advance(IDLE + 1)
        manager.touch_activity()
        assert manager.get_current_session() is None

    def test_touch_when_logged_out_is_noop(self, manager_factory, storage):
        manager_factory(None).touch_activity()
        assert SESSION_KEY not in storage

    def test_idle_warning(self, manager_factory, make_session, clock):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        assert not manager.idle_warning_due()
        clock.advance(IDLE - 5 * 60)
        assert manager.idle_warning_due()


class TestLogout:
    def test_logout_purges_and_notifies(self, manager_factory, online_session, storage):
        manager = manager_factory(RemoteVerified(online_session, TenantConfig.defaults()))
        manager.login("alice", "pw")
        seen = []
        manager.register_logout_callback(lambda reason: seen.append((reason, SESSION_KEY in storage)))

        manager.logout()

        assert seen == [("explicit", False)]
        assert TENANT_KEY not in storage
        assert manager.status is SessionStatus.LOGGED_OUT

    def test_logout_when_logged_out_does_not_notify(self, manager_factory):
        manager = manager_factory(None)
        seen = []
        manager.register_logout_callback(seen.append)
        manager.logout()
        assert seen == []


class TestTokenRefresh:
    def test_refresh_inside_window(self, manager_factory, make_session, token_factory, clock):
        session = make_session(token=token_factory({}), token_expires_at=clock() + 3600)
        manager = manager_factory(RemoteVerified(session))
        manager.login("alice", "pw")
        new_token = token_factory({"exp": clock() + 86400})
        connector = MagicMock()
        connector.refresh_token.return_value = new_token

        assert manager.refresh_token_if_needed(connector)
        assert manager.get_current_session().token == new_token
        assert manager.get_current_session().token_expires_at == clock() + 86400

    def test_no_refresh_outside_window(self, manager_factory, online_session):
        manager = manager_factory(RemoteVerified(online_session))
        manager.login("alice", "pw")
        connector = MagicMock()
        assert not manager.refresh_token_if_needed(connector)
        connector.refresh_token.assert_not_called()

    def test_refresh_failure_leaves_session(self, manager_factory, make_session, token_factory, clock):
        session = make_session(token=token_factory({}), token_expires_at=clock() + 60)
        manager = manager_factory(RemoteVerified(session))
        manager.login("alice", "pw")
        connector = MagicMock()
        connector.refresh_token.side_effect = RemoteUnavailableError("down")

        assert not manager.refresh_token_if_needed(connector)
        assert manager.get_current_session().token == session.token

    def test_offline_session_never_refreshes(self, manager_factory, make_session):
        manager = manager_factory(LocalVerified(make_session()))
        manager.login("alice", "pw")
        connector = MagicMock()
        assert not manager.refresh_token_if_needed(connector)
