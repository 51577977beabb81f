# =============================================================================
# clinic_core/auth/authentication.py
# Remote-first credential verification with offline fallback
# =============================================================================
"""
Credential verification for the clinic app.

Two sources, tried in order:
1. the backend login endpoint, when the backend is reachable;
2. the durable local credential directory (bcrypt hashes only).

An explicit rejection from the backend is final. Only a transport failure
(no usable answer) falls through to the local directory.
"""

from __future__ import annotations
import re
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

import bcrypt

from clinic_core.auth.permissions import parse_role
from clinic_core.auth.tokens import token_expiry
from clinic_core.errors.exceptions import (
    AuthenticationError,
    CredentialFormatError,
    RemoteUnavailableError,
)
from clinic_core.errors.handlers import report_error
from clinic_core.logging import get_logger
from clinic_core.state.typed_state import CredentialRecord, Session, TenantConfig

logger = get_logger(__name__)

# bcrypt modular-crypt format: $2a$/$2b$/$2y$, two-digit cost, 53 chars of salt+digest
BCRYPT_HASH_PATTERN = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")

GENERIC_FAILURE = "Invalid username or password"


class RejectReason(Enum):
    MISSING_INPUT = "missing_input"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNKNOWN_USER = "unknown_user"
    INACTIVE_ACCOUNT = "inactive_account"
    MALFORMED_HASH = "malformed_hash"
    UNKNOWN_ROLE = "unknown_role"
    INVALID_TOKEN = "invalid_token"


@dataclass(frozen=True)
class RemoteVerified:
    session: Session
    tenant_config: Optional[TenantConfig] = None


@dataclass(frozen=True)
class LocalVerified:
    session: Session


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    message: str = GENERIC_FAILURE
    remote: bool = False


AuthResult = Union[RemoteVerified, LocalVerified, Rejected]


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lower()


def is_strong_hash(value: Optional[str]) -> bool:
    """True if `value` looks like a bcrypt hash. Anything else is never compared."""
    return bool(value) and bool(BCRYPT_HASH_PATTERN.match(value))


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Example:
        >>> hash_password("mypassword123")
        '$2b$12$...'
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def check_password(password: str, password_hash: str, username: Optional[str] = None) -> bool:
    """
    Constant-time bcrypt comparison.

    Raises:
        CredentialFormatError: if `password_hash` is not a bcrypt hash
    """
    if not is_strong_hash(password_hash):
        raise CredentialFormatError(
            f"Cached credential for {username} is not a bcrypt hash; rejecting", username=username
        )
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError as e:
        raise CredentialFormatError(
            f"Cached credential for {username} could not be parsed; rejecting", username=username
        ) from e


class CredentialVerifier:
    """
    verify(username, password) -> RemoteVerified | LocalVerified | Rejected

    Args:
        connector: AuthAPIConnector, or None when no backend is configured
        directory: LocalDatabase holding the cached credential directory
        is_online: callable deciding whether the remote call is attempted
        settings: ClinicSettings (token lifetime, credential caching)
        clock: returns epoch seconds
    """

    def __init__(
        self,
        connector,
        directory,
        settings,
        is_online: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.time,
    ):
        self._connector = connector
        self._directory = directory
        self._settings = settings
        self._is_online = is_online
        self._clock = clock

    def verify(self, username: str, password: str) -> AuthResult:
        username = normalize_username(username)
        if not username or not password:
            return Rejected(RejectReason.MISSING_INPUT, "Username and password are required")

        if self._connector is not None and self._remote_reachable():
            try:
                return self._verify_remote(username, password)
            except AuthenticationError as e:
                logger.info(f"Remote login rejected for {username} ({e.details.get('status_code')})")
                return Rejected(RejectReason.INVALID_CREDENTIALS, e.message or GENERIC_FAILURE, remote=True)
            except RemoteUnavailableError as e:
                report_error(e, "Remote login")
                logger.info("Trying offline directory")

        return self._verify_local(username, password)

    def _remote_reachable(self) -> bool:
        try:
            return bool(self._is_online())
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False

    # -------------------------------------------------------------------------
    # Remote path
    # -------------------------------------------------------------------------

    def _verify_remote(self, username: str, password: str) -> AuthResult:
        response = self._connector.login(username, password)
        now = self._clock()
        user = response.user

        role = parse_role(user.get("role"))
        if role is None:
            logger.warning(f"Remote login for {username} returned unknown role {user.get('role')!r}")
            return Rejected(RejectReason.UNKNOWN_ROLE, "Account role not recognised", remote=True)

        expires_at = token_expiry(response.token, issued_at=now, default_ttl=self._settings.default_token_ttl)
        if expires_at is None or expires_at <= now:
            logger.warning(f"Remote login for {username} returned an unusable token")
            return Rejected(RejectReason.INVALID_TOKEN, "Login token could not be read", remote=True)

        tenant = TenantConfig.from_payload(response.tenant) if response.tenant else None
        session = Session(
            user_id=str(user.get("userId") or user.get("id") or username),
            username=username,
            display_name=user.get("name") or user.get("displayName") or username,
            role=role.value,
            assigned_stores=frozenset(user.get("stores") or ()),
            tenant_id=user.get("tenantId") or (tenant.tenant_id if tenant else None),
            token=response.token,
            token_expires_at=expires_at,
            last_activity_at=now,
            data_token=response.data_token,
        )

        self._cache_after_remote(session, password, tenant)
        return RemoteVerified(session=session, tenant_config=tenant)

    def _cache_after_remote(self, session: Session, password: str, tenant: Optional[TenantConfig]) -> None:
        """Refresh the offline directory so the next offline login works."""
        if self._directory is None or not self._settings.cache_credentials:
            return
        try:
            self._directory.upsert_credential(CredentialRecord(
                username=session.username,
                password_hash=hash_password(password),
                role=session.role,
                assigned_stores=session.assigned_stores,
                active=True,
                user_id=session.user_id,
                display_name=session.display_name,
                tenant_id=session.tenant_id,
            ))
            if tenant is not None:
                self._directory.set_setting(self._directory.TENANT_CONFIG_KEY, tenant.to_dict())
        except sqlite3.Error as e:
            logger.warning(f"Could not cache credentials for {session.username}: {e}")

    # -------------------------------------------------------------------------
    # Offline path
    # -------------------------------------------------------------------------

    def _verify_local(self, username: str, password: str) -> AuthResult:
        if self._directory is None:
            return Rejected(RejectReason.UNKNOWN_USER)

        try:
            record = self._directory.get_credential(username)
        except sqlite3.Error as e:
            logger.error(f"Credential directory unreadable: {e}")
            return Rejected(RejectReason.UNKNOWN_USER)

        if record is None:
            return Rejected(RejectReason.UNKNOWN_USER)
        if not record.active:
            return Rejected(RejectReason.INACTIVE_ACCOUNT, "Account is disabled")

        try:
            matches = check_password(password, record.password_hash, username)
        except CredentialFormatError as e:
            report_error(e, "Offline password check")
            return Rejected(RejectReason.MALFORMED_HASH)

        if not matches:
            return Rejected(RejectReason.INVALID_CREDENTIALS)

        role = parse_role(record.role)
        if role is None:
            return Rejected(RejectReason.UNKNOWN_ROLE, "Account role not recognised")

        session = Session(
            user_id=record.user_id or username,
            username=username,
            display_name=record.display_name or username,
            role=role.value,
            assigned_stores=record.assigned_stores,
            tenant_id=record.tenant_id,
            last_activity_at=self._clock(),
        )
        return LocalVerified(session=session)


if __name__ == "__main__":
    # Utility to generate hashes for the offline credential directory
    import getpass

    print("Password Hash Generator")
    print("=" * 50)
    print(hash_password(getpass.getpass("Password: ")))
