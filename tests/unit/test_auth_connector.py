# =============================================================================
# tests/unit/test_auth_connector.py
# Unit Tests for the backend auth connector
# =============================================================================

import pytest
import requests
import responses

from clinic_core.api import APIConfig, AuthAPIConnector
from clinic_core.errors.exceptions import AuthenticationError, RemoteUnavailableError

BASE = "https://clinic.test"
LOGIN = f"{BASE}/api/auth/login"


@pytest.fixture
def connector():
    return AuthAPIConnector(APIConfig(api_name="clinic-auth", base_url=BASE, timeout=2))


class TestLogin:
    @responses.activate
    def test_success(self, connector):
        responses.add(responses.POST, LOGIN, status=200, json={
            "success": True,
            "token": "tok",
            "supabaseToken": "data",
            "user": {"userId": "u1", "role": "staff"},
            "tenant": {"id": "t1", "name": "Hong Ching"},
        })

        result = connector.login("mary", "pw")

        assert result.token == "tok"
        assert result.data_token == "data"
        assert result.tenant["id"] == "t1"
        assert responses.calls[0].request.body == b'{"username": "mary", "password": "pw"}'

    @pytest.mark.parametrize("status", [400, 401, 403, 429])
    @responses.activate
    def test_explicit_rejections(self, connector, status):
        responses.add(responses.POST, LOGIN, status=status, json={"error": "nope"})
        with pytest.raises(AuthenticationError) as exc:
            connector.login("mary", "pw")
        assert exc.value.details["status_code"] == status

    @responses.activate
    def test_success_false_is_rejection(self, connector):
        responses.add(responses.POST, LOGIN, status=200, json={"success": False, "error": "bad"})
        with pytest.raises(AuthenticationError):
            connector.login("mary", "pw")

    @pytest.mark.parametrize("status", [500, 502, 503])
    @responses.activate
    def test_server_errors_are_transport_failures(self, connector, status):
        responses.add(responses.POST, LOGIN, status=status, body="gateway")
        with pytest.raises(RemoteUnavailableError):
            connector.login("mary", "pw")

    @responses.activate
    def test_connection_error_is_transport_failure(self, connector):
        responses.add(responses.POST, LOGIN, body=requests.exceptions.ConnectionError("down"))
        with pytest.raises(RemoteUnavailableError):
            connector.login("mary", "pw")

    @responses.activate
    def test_unparseable_body_is_transport_failure(self, connector):
        responses.add(responses.POST, LOGIN, status=200, body="<html>")
        with pytest.raises(RemoteUnavailableError):
            connector.login("mary", "pw")

    @responses.activate
    def test_missing_token_is_transport_failure(self, connector):
        responses.add(responses.POST, LOGIN, status=200, json={"success": True, "user": {}})
        with pytest.raises(RemoteUnavailableError):
            connector.login("mary", "pw")


class TestRefresh:
    @responses.activate
    def test_returns_new_token(self, connector):
        responses.add(responses.POST, f"{BASE}/api/auth/verify", json={"success": True, "token": "new"})
        assert connector.refresh_token("old") == "new"

    @responses.activate
    def test_unsuccessful_verify_returns_none(self, connector):
        responses.add(responses.POST, f"{BASE}/api/auth/verify", json={"success": False})
        assert connector.refresh_token("old") is None


class TestPasswordReset:
    @responses.activate
    def test_request_by_email(self, connector):
        responses.add(responses.POST, f"{BASE}/api/auth/reset-request", json={"success": True})
        result = connector.request_password_reset(email=" Mary@Clinic.HK ")
        assert result.success
        assert responses.calls[0].request.body == b'{"email": "mary@clinic.hk"}'

    def test_request_needs_identifier(self, connector):
        assert not connector.request_password_reset()

    def test_short_password_rejected_locally(self, connector):
        result = connector.confirm_password_reset("reset-token", "12345")
        assert not result.success
        assert result.error_code == "RESET_INPUT"

    @responses.activate
    def test_confirm_failure_is_result_not_exception(self, connector):
        responses.add(responses.POST, f"{BASE}/api/auth/reset", status=400, json={"error": "Token expired"})
        result = connector.confirm_password_reset("reset-token", "123456")
        assert not result.success
        assert result.error == "Token expired"
