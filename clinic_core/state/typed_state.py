# =============================================================================
# clinic_core/state/typed_state.py
# Typed records for the session layer
# =============================================================================

from __future__ import annotations
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple


class SessionStatus(Enum):
    """Session lifecycle states."""
    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    ACTIVE_ONLINE = "active_online"      # Remote-verified, holds a token
    ACTIVE_OFFLINE = "active_offline"    # Locally verified, no token
    EXPIRING = "expiring"                # Transient while purging a stale session


def _store_set(stores: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not stores:
        return frozenset()
    if isinstance(stores, str):
        return frozenset([stores])
    return frozenset(str(s) for s in stores)


@dataclass(frozen=True)
class Session:
    """
    Authenticated context for the current tab.

    Immutable: `touch` and token refresh produce a new instance which
    replaces the stored one.
    """
    user_id: str
    username: str
    display_name: str
    role: str
    assigned_stores: FrozenSet[str] = field(default_factory=frozenset)
    tenant_id: Optional[str] = None
    token: Optional[str] = None
    token_expires_at: Optional[float] = None
    last_activity_at: float = 0.0
    data_token: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.ACTIVE_ONLINE if self.has_token else SessionStatus.ACTIVE_OFFLINE

    def with_activity(self, now: float) -> Session:
        return replace(self, last_activity_at=now)

    def with_token(self, token: str, expires_at: float) -> Session:
        return replace(self, token=token, token_expires_at=expires_at)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["assigned_stores"] = sorted(self.assigned_stores)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Session:
        """Rebuild from storage. Raises KeyError/TypeError/ValueError if malformed."""
        expires = data.get("token_expires_at")
        return cls(
            user_id=str(data["user_id"]),
            username=str(data["username"]),
            display_name=str(data.get("display_name") or data["username"]),
            role=str(data["role"]),
            assigned_stores=_store_set(data.get("assigned_stores")),
            tenant_id=data.get("tenant_id"),
            token=data.get("token"),
            token_expires_at=float(expires) if expires is not None else None,
            last_activity_at=float(data.get("last_activity_at", 0.0)),
            data_token=data.get("data_token"),
        )


@dataclass(frozen=True)
class TenantConfig:
    """Per-tenant branding and reference lists. Absent in offline sessions."""
    tenant_id: Optional[str]
    name: str
    slug: Optional[str] = None
    branding: Dict[str, Any] = field(default_factory=dict)
    stores: Tuple[str, ...] = ()
    doctor_list: Tuple[str, ...] = ()
    service_list: Tuple[Dict[str, Any], ...] = ()
    plan_settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> TenantConfig:
        """Build from the remote login `tenant` object."""
        stores = []
        for s in payload.get("stores") or []:
            stores.append(s.get("name", "") if isinstance(s, dict) else str(s))
        return cls(
            tenant_id=payload.get("id") or payload.get("tenant_id"),
            name=payload.get("name") or "",
            slug=payload.get("slug"),
            branding={
                "name_en": payload.get("nameEn") or payload.get("name_en"),
                "logo_url": payload.get("logoUrl") or payload.get("logo_url"),
                "primary_color": (payload.get("settings") or {}).get("primaryColor"),
            },
            stores=tuple(s for s in stores if s),
            doctor_list=tuple(payload.get("doctors") or payload.get("doctor_list") or ()),
            service_list=tuple(payload.get("services") or payload.get("service_list") or ()),
            plan_settings=dict(payload.get("settings") or payload.get("plan_settings") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.tenant_id,
            "name": self.name,
            "slug": self.slug,
            "branding": dict(self.branding),
            "stores": list(self.stores),
            "doctor_list": list(self.doctor_list),
            "service_list": [dict(s) for s in self.service_list],
            "plan_settings": dict(self.plan_settings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TenantConfig:
        return cls(
            tenant_id=data.get("id"),
            name=data.get("name") or "",
            slug=data.get("slug"),
            branding=dict(data.get("branding") or {}),
            stores=tuple(data.get("stores") or ()),
            doctor_list=tuple(data.get("doctor_list") or ()),
            service_list=tuple(data.get("service_list") or ()),
            plan_settings=dict(data.get("plan_settings") or {}),
        )

    @classmethod
    def defaults(cls) -> TenantConfig:
        """Fallback used when no tenant config could be fetched or cached."""
        return cls(
            tenant_id=None,
            name="Clinic",
            slug="default",
            branding={"primary_color": "#0e7490"},
            service_list=(
                {"label": "Consultation", "fee": 350, "active": True},
                {"label": "Acupuncture", "fee": 450, "active": True},
                {"label": "Massage", "fee": 350, "active": True},
            ),
            plan_settings={"businessHours": "10:00-20:00"},
        )


@dataclass(frozen=True)
class CredentialRecord:
    """Entry of the durable offline user directory."""
    username: str
    password_hash: str
    role: str
    assigned_stores: FrozenSet[str] = field(default_factory=frozenset)
    active: bool = True
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    tenant_id: Optional[str] = None

    def __repr__(self) -> str:
        # Keep the hash out of logs and tracebacks
        return (
            f"CredentialRecord(username={self.username!r}, role={self.role!r}, "
            f"active={self.active})"
        )
