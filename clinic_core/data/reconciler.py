# =============================================================================
# clinic_core/data/reconciler.py
# Merges insert/update/delete notifications into in-memory collections
# =============================================================================
"""
Change reconciliation.

`apply_change(collections, event)` returns a new mapping; the input mapping
and its lists are never mutated. Only the list for `event.table` is rebuilt,
every other collection is shared with the input.

Delivery from the change feed is at-least-once and unordered, so:
- INSERT of an id already present is dropped
- UPDATE of a missing id is appended
- DELETE of a missing id does nothing
Applying the same event twice leaves the same state as applying it once.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from clinic_core.logging import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]
Collections = Mapping[str, List[Record]]


class ChangeKind(Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: Any) -> Optional[ChangeKind]:
        if isinstance(value, ChangeKind):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete notification for a single table."""
    table: str
    kind: ChangeKind
    record: Record
    previous_record: Optional[Record] = None

    @property
    def record_id(self) -> Any:
        if self.kind is ChangeKind.DELETE:
            source = self.previous_record or self.record
        else:
            source = self.record or self.previous_record
        return (source or {}).get("id")

    @classmethod
    def from_payload(cls, table: str, payload: Mapping[str, Any]) -> Optional[ChangeEvent]:
        """
        Build from a realtime `postgres_changes` payload.

        Accepts both the wire shape (`type`, `record`, `old_record`) and the
        client shape (`eventType`, `new`, `old`). Returns None if the payload
        carries no usable kind.
        """
        data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
        kind = ChangeKind.parse(data.get("eventType") or data.get("type"))
        if kind is None:
            return None
        record = data.get("new") or data.get("record") or {}
        previous = data.get("old") or data.get("old_record") or None
        return cls(
            table=data.get("table") or table,
            kind=kind,
            record=dict(record),
            previous_record=dict(previous) if previous else None,
        )


def _index_of(records: List[Record], record_id: Any) -> int:
    for i, existing in enumerate(records):
        if existing.get("id") == record_id:
            return i
    return -1


def apply_to_list(records: List[Record], event: ChangeEvent) -> List[Record]:
    """Return a new list with `event` applied. `records` is left untouched."""
    record_id = event.record_id
    if record_id is None:
        logger.debug(f"Ignoring {event.kind.value} on {event.table} without an id")
        return records

    index = _index_of(records, record_id)

    if event.kind is ChangeKind.INSERT:
        if index >= 0:
            logger.debug(f"Duplicate insert {event.table}/{record_id} ignored")
            return records
        return records + [dict(event.record)]

    if event.kind is ChangeKind.UPDATE:
        if index < 0:
            logger.debug(f"Update of missing {event.table}/{record_id}; appending")
            return records + [dict(event.record)]
        updated = list(records)
        updated[index] = dict(event.record)
        return updated

    if index < 0:
        logger.debug(f"Delete of missing {event.table}/{record_id} ignored")
        return records
    return records[:index] + records[index + 1:]


def apply_change(collections: Collections, event: ChangeEvent) -> Dict[str, List[Record]]:
    """
    Apply one change event.

    Args:
        collections: current table -> records mapping
        event: change to merge

    Returns:
        New mapping; unchanged collections are shared with `collections`
    """
    current = list(collections.get(event.table, []))
    result = dict(collections)
    result[event.table] = apply_to_list(current, event)
    return result


def normalize_collection(records: Iterable[Record]) -> List[Record]:
    """Drop id-less rows and keep the first row per id, preserving order."""
    seen = set()
    normalized = []
    for record in records or []:
        if not isinstance(record, Mapping):
            continue
        record_id = record.get("id")
        if record_id is None or record_id in seen:
            continue
        seen.add(record_id)
        normalized.append(dict(record))
    return normalized
