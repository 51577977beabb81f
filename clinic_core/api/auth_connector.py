"""
Auth API Connector
Login, token verification/refresh and password reset against the clinic backend
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from clinic_core.errors.exceptions import AuthenticationError, RemoteUnavailableError
from clinic_core.logging import get_logger
from clinic_core.services.base_service import ServiceResult

from .base_connector import APIConfig, BaseAPIConnector

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass
class LoginResponse:
    """Successful answer of POST /api/auth/login"""
    token: str
    user: Dict[str, Any] = field(default_factory=dict)
    tenant: Optional[Dict[str, Any]] = None
    data_token: Optional[str] = None


class AuthAPIConnector(BaseAPIConnector):
    """
    Connector for the backend auth endpoints.

    Expected API:
        POST /api/auth/login          {username, password} -> {success, token, user, tenant?, supabaseToken?}
        POST /api/auth/verify         {token} -> {success, user, token?}
        POST /api/auth/reset-request  {username} | {email} -> {success, error?}
        POST /api/auth/reset          {token, newPassword} -> {success, error?}
    """

    LOGIN_PATH = "/api/auth/login"
    VERIFY_PATH = "/api/auth/verify"
    RESET_REQUEST_PATH = "/api/auth/reset-request"
    RESET_PATH = "/api/auth/reset"

    @classmethod
    def from_settings(cls, settings) -> "AuthAPIConnector":
        return cls(APIConfig(
            api_name="clinic-auth",
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
        ))

    def _set_auth_header(self):
        """Set API key header for the clinic backend"""
        self.session.headers.update({"X-API-Key": self.config.api_key})

    def login(self, username: str, password: str) -> LoginResponse:
        """
        Verify credentials remotely.

        Raises:
            AuthenticationError: credentials explicitly rejected
            RemoteUnavailableError: backend unreachable or unusable answer
        """
        body = self._post(self.LOGIN_PATH, {"username": username, "password": password})

        if not body.get("success"):
            raise AuthenticationError(body.get("error") or "Login rejected", username=username)

        token = body.get("token")
        user = body.get("user") or body.get("session")
        if not token or not isinstance(user, dict):
            raise RemoteUnavailableError(
                "Login response missing token or user",
                endpoint=self.LOGIN_PATH,
            )

        tenant = body.get("tenant") or body.get("tenantConfig")
        return LoginResponse(
            token=token,
            user=user,
            tenant=tenant if isinstance(tenant, dict) else None,
            data_token=body.get("supabaseToken"),
        )

    def refresh_token(self, token: str) -> Optional[str]:
        """
        Ask the backend to re-verify `token`.

        Returns the replacement token if one was issued, else None.
        """
        body = self._post(self.VERIFY_PATH, {"token": token})
        if not body.get("success"):
            return None
        return body.get("token")

    def request_password_reset(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ServiceResult:
        if not username and not email:
            return ServiceResult.fail("Username or email required", error_code="RESET_INPUT")

        payload = {"username": username.strip().lower()} if username else {"email": email.strip().lower()}
        return self._call_reset(self.RESET_REQUEST_PATH, payload)

    def confirm_password_reset(self, token: str, new_password: str) -> ServiceResult:
        if not token or not new_password:
            return ServiceResult.fail("Reset token and new password required", error_code="RESET_INPUT")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return ServiceResult.fail(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                error_code="RESET_INPUT",
            )
        return self._call_reset(self.RESET_PATH, {"token": token, "newPassword": new_password})

    def _call_reset(self, path: str, payload: Dict[str, Any]) -> ServiceResult:
        try:
            body = self._post(path, payload)
        except (AuthenticationError, RemoteUnavailableError) as e:
            logger.warning(f"Password reset call {path} failed: {e.code}")
            return ServiceResult.from_exception(e)

        if body.get("success"):
            return ServiceResult.ok(body.get("message"))
        return ServiceResult.fail(body.get("error") or "Password reset failed", error_code="RESET_FAILED")
