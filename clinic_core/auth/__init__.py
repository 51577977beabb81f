"""
Authentication module for the clinic app.
Provides credential verification, the session lifecycle and role-based access control.
"""

from .permissions import (
    CAPABILITIES,
    PERMISSIONS,
    Role,
    parse_role,
    role_has_capability,
)
from .authentication import (
    CredentialVerifier,
    LocalVerified,
    Rejected,
    RejectReason,
    RemoteVerified,
    hash_password,
)
from .session_manager import SessionManager
from .navigation import (
    PAGE_PERMISSIONS,
    can_open_page,
    require_page_access,
    visible_pages,
)

__all__ = [
    "CAPABILITIES",
    "PERMISSIONS",
    "Role",
    "parse_role",
    "role_has_capability",
    "CredentialVerifier",
    "LocalVerified",
    "Rejected",
    "RejectReason",
    "RemoteVerified",
    "hash_password",
    "SessionManager",
    "PAGE_PERMISSIONS",
    "can_open_page",
    "require_page_access",
    "visible_pages",
]
