# =============================================================================
# clinic_core/auth/session_manager.py
# Session lifecycle: login, logout, idle timeout, token expiry, activity touch
# =============================================================================
"""
SessionManager - owns the authenticated session of the current tab.

    LOGGED_OUT --login--> AUTHENTICATING --token--> ACTIVE_ONLINE
                                         --no token--> ACTIVE_OFFLINE
                                         --rejected--> LOGGED_OUT
    ACTIVE_* --idle / token expired / logout--> (EXPIRING) --> LOGGED_OUT

Timeouts are checked on every read of the current session, not by a timer:
a stale session is purged and None is returned. Every transition into
LOGGED_OUT purges session, token and tenant config from tab storage before
the logout callbacks (subscription teardown) run.
"""

from __future__ import annotations
import time
from typing import Callable, List, Optional

from clinic_core.auth.authentication import AuthResult, Rejected, RemoteVerified
from clinic_core.auth.permissions import role_has_capability
from clinic_core.auth.tokens import token_expiry
from clinic_core.errors.exceptions import ClinicError, StaleSessionError
from clinic_core.errors.handlers import report_error
from clinic_core.logging import get_logger
from clinic_core.state.session import SESSION_KEY, TENANT_KEY, TabStorage
from clinic_core.state.typed_state import Session, SessionStatus, TenantConfig

logger = get_logger(__name__)

LogoutCallback = Callable[[str], None]
LoginCallback = Callable[[Session], None]


class SessionManager:
    """
    Args:
        verifier: CredentialVerifier
        storage: TabStorage for the current tab
        settings: ClinicSettings (idle timeout, warning and refresh windows)
        clock: returns epoch seconds
    """

    def __init__(self, verifier, storage: TabStorage, settings, clock: Callable[[], float] = time.time):
        self._verifier = verifier
        self._storage = storage
        self._settings = settings
        self._clock = clock
        self._authenticating = False
        self._expiring = False
        self._logout_callbacks: List[LogoutCallback] = []
        self._login_callbacks: List[LoginCallback] = []
        self.last_ended: Optional[StaleSessionError] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def status(self) -> SessionStatus:
        if self._authenticating:
            return SessionStatus.AUTHENTICATING
        if self._expiring:
            return SessionStatus.EXPIRING
        session = self.get_current_session()
        return session.status if session is not None else SessionStatus.LOGGED_OUT

    def _read_session(self) -> Optional[Session]:
        data = self._storage.get(SESSION_KEY)
        if data is None:
            return None
        try:
            return Session.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self._end(StaleSessionError(f"Unreadable session record: {e}", reason="corrupt"))
            return None

    def _write_session(self, session: Session) -> None:
        self._storage.set(SESSION_KEY, session.to_dict())

    def _validate(self, session: Session, now: float) -> None:
        """Raise StaleSessionError if either timeout condition holds."""
        if now - session.last_activity_at > self._settings.idle_timeout:
            raise StaleSessionError("Session idle too long", reason="idle_timeout")
        if session.has_token:
            if session.token_expires_at is None or now >= session.token_expires_at:
                raise StaleSessionError("Session token expired", reason="token_expired")

    def get_current_session(self) -> Optional[Session]:
        """
        The current session, re-validated on every call.

        Returns None when logged out. A stale session is destroyed and None
        is returned.
        """
        session = self._read_session()
        if session is None:
            return None

        try:
            self._validate(session, self._clock())
        except StaleSessionError as e:
            self._expiring = True
            try:
                self._end(e)
            finally:
                self._expiring = False
            return None

        return session

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def login(self, username: str, password: str) -> AuthResult:
        """
        Verify credentials and open a session.

        An existing session is ended first ("replaced"), so its subscriptions
        are torn down before the new user's are opened.
        """
        if self._read_session() is not None:
            self.logout(reason="replaced")

        self._authenticating = True
        try:
            result = self._verifier.verify(username, password)
        finally:
            self._authenticating = False

        if isinstance(result, Rejected):
            logger.info(f"Login rejected: {result.reason.value}")
            return result

        self.last_ended = None
        session = result.session.with_activity(self._clock())
        self._write_session(session)
        if isinstance(result, RemoteVerified) and result.tenant_config is not None:
            self._storage.set(TENANT_KEY, result.tenant_config.to_dict())

        logger.info(f"{session.username} logged in ({session.status.value})")
        for callback in list(self._login_callbacks):
            try:
                callback(session)
            except Exception as e:
                logger.error(f"Error in login callback: {e}")
        return result

    def _end(self, error: StaleSessionError) -> None:
        """Log out because the stored session is no longer usable."""
        report_error(error, "Session check")
        self.last_ended = error
        self.logout(reason=error.details["reason"])

    def logout(self, reason: str = "explicit") -> None:
        """Purge the session synchronously, then notify listeners."""
        had_session = SESSION_KEY in self._storage
        self._storage.purge_auth()
        if not had_session:
            return

        logger.info(f"Logged out ({reason})")
        for callback in list(self._logout_callbacks):
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Error in logout callback: {e}")

    def touch_activity(self) -> None:
        """Stamp activity on a still-valid session. No-op when logged out."""
        session = self.get_current_session()
        if session is None:
            return
        self._write_session(session.with_activity(self._clock()))

    # =========================================================================
    # QUERIES
    # =========================================================================

    def has_capability(self, action: str) -> bool:
        session = self.get_current_session()
        if session is None:
            return False
        return role_has_capability(session.role, action)

    def idle_seconds_remaining(self) -> Optional[float]:
        session = self.get_current_session()
        if session is None:
            return None
        return self._settings.idle_timeout - (self._clock() - session.last_activity_at)

    def idle_warning_due(self) -> bool:
        """True within the warning window before the idle timeout."""
        remaining = self.idle_seconds_remaining()
        return remaining is not None and remaining <= self._settings.idle_warning

    def tenant_config(self) -> Optional[TenantConfig]:
        """Tenant config fetched with the current login, if any."""
        if self.get_current_session() is None:
            return None
        data = self._storage.get(TENANT_KEY)
        if not data:
            return None
        try:
            return TenantConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unreadable tenant config in tab storage: {e}")
            return None

    def refresh_token_if_needed(self, connector) -> bool:
        """
        Re-verify the token when it expires within the refresh window.

        Returns True if the token was replaced. Failures leave the session
        untouched; expiry still ends it on read.
        """
        session = self.get_current_session()
        if session is None or not session.has_token or connector is None:
            return False

        now = self._clock()
        if session.token_expires_at - now > self._settings.token_refresh_window:
            return False

        try:
            new_token = connector.refresh_token(session.token)
        except ClinicError as e:
            logger.debug(f"Token refresh failed: {e.code}")
            return False
        if not new_token:
            return False

        expires_at = token_expiry(new_token, issued_at=now, default_ttl=self._settings.default_token_ttl)
        if expires_at is None or expires_at <= now:
            logger.warning("Refreshed token unreadable; keeping current token")
            return False

        self._write_session(session.with_token(new_token, expires_at))
        logger.info("Session token refreshed")
        return True

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_logout_callback(self, callback: LogoutCallback) -> None:
        if callback not in self._logout_callbacks:
            self._logout_callbacks.append(callback)

    def register_login_callback(self, callback: LoginCallback) -> None:
        if callback not in self._login_callbacks:
            self._login_callbacks.append(callback)
