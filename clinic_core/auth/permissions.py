# =============================================================================
# clinic_core/auth/permissions.py
# Role -> capability matrix (fixed per deployment)
# =============================================================================

from __future__ import annotations
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class Role(str, Enum):
    """Closed set of roles. Adding one must be matched in scoping._POLICIES."""
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    DOCTOR = "doctor"


def parse_role(value: Optional[str]) -> Optional[Role]:
    """Map a stored role string to a Role, or None if unrecognised."""
    if not value:
        return None
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


CAPABILITIES = (
    "viewAllStores",
    "viewDashboard",
    "editRevenue",
    "editExpenses",
    "editARAP",
    "viewPayroll",
    "editPayroll",
    "viewDoctorAnalytics",
    "viewReports",
    "viewSettings",
    "manageUsers",
    "viewReceiptScanner",
    "viewPatients",
    "viewBookings",
    "viewEMR",
    "editEMR",
    "viewPackages",
    "editPackages",
)


def _grant(*allowed: str) -> Mapping[str, bool]:
    unknown = set(allowed) - set(CAPABILITIES)
    if unknown:
        raise ValueError(f"Unknown capabilities: {sorted(unknown)}")
    return MappingProxyType({cap: cap in allowed for cap in CAPABILITIES})


PERMISSIONS: Mapping[Role, Mapping[str, bool]] = MappingProxyType({
    Role.SUPERADMIN: _grant(*CAPABILITIES),
    Role.ADMIN: _grant(*CAPABILITIES),
    Role.MANAGER: _grant(
        "viewDashboard", "editRevenue", "editExpenses", "editARAP",
        "viewDoctorAnalytics", "viewReports", "viewReceiptScanner",
        "viewPatients", "viewBookings", "viewEMR", "editEMR",
        "viewPackages", "editPackages",
    ),
    Role.DOCTOR: _grant(
        "editRevenue", "viewDoctorAnalytics", "viewPatients",
        "viewBookings", "viewEMR", "editEMR",
    ),
    Role.STAFF: _grant(
        "editRevenue", "editExpenses", "viewReceiptScanner",
        "viewPatients", "viewBookings", "viewPackages",
    ),
})


def role_has_capability(role: Optional[str], action: str) -> bool:
    """Look up `action` for `role`; unknown roles and actions are denied."""
    parsed = parse_role(role)
    if parsed is None:
        return False
    return bool(PERMISSIONS[parsed].get(action, False))
