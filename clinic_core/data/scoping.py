# =============================================================================
# clinic_core/data/scoping.py
# Role- and store-narrowed projection of the dataset
# =============================================================================
"""
scope(dataset, session, active_store) -> ScopedDataset

Pure: no I/O, inputs untouched. Re-derive on every render; a ScopedDataset
is only valid for the session and store selection it was built from.

Per-role rules live in `_POLICIES`, one entry per Role. The import-time
check below fails if a Role has no entry. A table not allow-listed for the
role comes back empty.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import pandas as pd

from clinic_core.auth.permissions import Role, parse_role
from clinic_core.logging import get_logger

logger = get_logger(__name__)

STORE_FIELD = "store"
DOCTOR_FIELD = "doctor"
DEFAULT_SHARED_STORE = "shared"

# Collections whose records belong to a single store
STORE_SCOPED: FrozenSet[str] = frozenset({"revenue", "expenses", "patients", "bookings"})

MANAGER_PASSTHROUGH: FrozenSet[str] = frozenset({"arap", "inventory", "products", "packages"})
STAFF_PASSTHROUGH: FrozenSet[str] = frozenset({"inventory", "products", "packages"})
DOCTOR_TABLES: FrozenSet[str] = frozenset({"revenue", "patients", "bookings", "consultations"})

Records = Tuple[Mapping[str, Any], ...]


@dataclass(frozen=True)
class ScopedDataset:
    """Read-oriented projection handed to feature pages."""
    collections: Mapping[str, Records] = field(default_factory=dict)
    role: Optional[Role] = None
    active_store: Optional[str] = None
    unrestricted: bool = False

    def get(self, table: str) -> Records:
        return self.collections.get(table, ())

    def __getitem__(self, table: str) -> Records:
        return self.get(table)

    def __contains__(self, table: str) -> bool:
        return bool(self.collections.get(table))

    def to_frame(self, table: str) -> pd.DataFrame:
        """Table as a DataFrame (empty frame if nothing is visible)."""
        return pd.DataFrame([dict(r) for r in self.get(table)])


@dataclass(frozen=True)
class _Context:
    session: Any
    active_store: Optional[str]
    shared_store: str


def _in_stores(stores: Iterable[str], shared_store: str) -> Callable[[Dict[str, Any]], bool]:
    allowed = set(stores) | {shared_store}
    return lambda record: record.get(STORE_FIELD) in allowed


def _read_only(record: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(record)))


def _filter(records, predicate=None) -> Records:
    """Read-only copies of the matching records; the store's dicts never leave it."""
    return tuple(_read_only(r) for r in records if predicate is None or predicate(r))


def _admin_view(dataset, ctx: _Context) -> Dict[str, Records]:
    result = {}
    for table, records in dataset.items():
        if ctx.active_store and table in STORE_SCOPED:
            result[table] = _filter(records, _in_stores([ctx.active_store], ctx.shared_store))
        else:
            result[table] = _filter(records)
    return result


def _store_bound_view(passthrough: FrozenSet[str]):
    def view(dataset, ctx: _Context) -> Dict[str, Records]:
        assigned = ctx.session.assigned_stores
        if ctx.active_store and ctx.active_store in assigned:
            stores = {ctx.active_store}
        else:
            stores = set(assigned)
        in_stores = _in_stores(stores, ctx.shared_store)

        result = {}
        for table, records in dataset.items():
            if table in STORE_SCOPED:
                result[table] = _filter(records, in_stores)
            elif table in passthrough:
                result[table] = _filter(records)
            else:
                result[table] = ()
        return result
    return view


def _doctor_view(dataset, ctx: _Context) -> Dict[str, Records]:
    name = ctx.session.display_name
    result = {}
    for table, records in dataset.items():
        if table in DOCTOR_TABLES and name:
            result[table] = _filter(records, lambda r: r.get(DOCTOR_FIELD) == name)
        else:
            result[table] = ()
    return result


_POLICIES: Mapping[Role, Callable[[Mapping[str, Any], _Context], Dict[str, Records]]] = {
    Role.SUPERADMIN: _admin_view,
    Role.ADMIN: _admin_view,
    Role.MANAGER: _store_bound_view(MANAGER_PASSTHROUGH),
    Role.STAFF: _store_bound_view(STAFF_PASSTHROUGH),
    Role.DOCTOR: _doctor_view,
}

_missing = set(Role) - set(_POLICIES)
if _missing:
    raise RuntimeError(f"Roles without a scoping policy: {sorted(r.value for r in _missing)}")


def _empty(dataset: Mapping[str, Any]) -> Dict[str, Records]:
    return {table: () for table in dataset}


def scope(
    dataset: Mapping[str, Iterable[Dict[str, Any]]],
    session,
    active_store: Optional[str] = None,
    *,
    shared_store: str = DEFAULT_SHARED_STORE,
) -> ScopedDataset:
    """
    Narrow `dataset` to what `session` may see.

    Args:
        dataset: table -> records (the full, unscoped snapshot)
        session: current Session, or None when logged out
        active_store: store picked in the store selector, or None for "all"
        shared_store: store value shared across every store

    Returns:
        ScopedDataset; every table is empty when there is no session or
        the role is not recognised
    """
    dataset = dataset or {}
    if session is None:
        return ScopedDataset(MappingProxyType(_empty(dataset)))

    role = parse_role(session.role)
    if role is None:
        logger.warning(f"No scoping policy for role {session.role!r}; returning empty view")
        return ScopedDataset(MappingProxyType(_empty(dataset)))

    ctx = _Context(session=session, active_store=active_store or None, shared_store=shared_store)
    collections = _POLICIES[role](dataset, ctx)
    return ScopedDataset(
        collections=MappingProxyType(collections),
        role=role,
        active_store=ctx.active_store,
        unrestricted=role is Role.SUPERADMIN,
    )


def is_visible(record: Dict[str, Any], table: str, session, *, shared_store: str = DEFAULT_SHARED_STORE) -> bool:
    """True if `record` would survive scoping for `session` (no store selection)."""
    return bool(scope({table: [record]}, session, shared_store=shared_store).get(table))
