# =============================================================================
# clinic_core/data/dataset_store.py
# The single owned in-memory dataset
# =============================================================================
"""
DatasetStore - owns the full (unscoped) dataset.

Feature pages never touch the raw collections. They read a scoped
projection (see scoping.scope) and write through `dispatch`, which feeds the
same reconciliation path as realtime change events.

The store is bound to the (tenant, user) of the active session. Mirroring
and queued writes are tagged with that owner.

Every update swaps in a whole new mapping. A short lock serialises the swap
because realtime callbacks arrive on the feed's thread while the page script
runs on its own.
"""

from __future__ import annotations
import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from clinic_core.data.reconciler import ChangeEvent, ChangeKind, apply_change, normalize_collection
from clinic_core.logging import get_logger

logger = get_logger(__name__)

Dataset = Mapping[str, List[Dict[str, Any]]]
Listener = Callable[[ChangeEvent], None]


class DatasetStore:
    """
    Args:
        local_db: optional LocalDatabase; applied changes are mirrored to it
        write_queue: optional SyncEngine; locally dispatched writes are queued on it
    """

    def __init__(self, local_db=None, write_queue=None):
        self._collections: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._local_db = local_db
        self._write_queue = write_queue
        self.source: Optional[str] = None
        self.tenant_id: Optional[str] = None
        self.user_id: Optional[str] = None

    @property
    def owner(self) -> Tuple[Optional[str], Optional[str]]:
        return (self.tenant_id, self.user_id)

    def bind(self, tenant_id: Optional[str], user_id: Optional[str]) -> None:
        """Attach the store to the session whose data it is about to hold."""
        with self._lock:
            self.tenant_id = tenant_id
            self.user_id = user_id

    def snapshot(self) -> Dataset:
        """Read-only view of the current dataset."""
        return MappingProxyType(self._collections)

    def find(self, table: str, record_id: Any) -> Optional[Dict[str, Any]]:
        """Copy of the stored record with `record_id`, or None."""
        for record in self._collections.get(table, ()):
            if record.get("id") == record_id:
                return dict(record)
        return None

    def tables(self) -> List[str]:
        return list(self._collections)

    def replace_all(self, dataset: Mapping[str, Any], source: str = "remote", mirror: bool = True) -> None:
        """Install a full snapshot (bulk load, mirror or seed)."""
        collections = {
            table: normalize_collection(records)
            for table, records in dataset.items()
            if isinstance(records, list)
        }
        with self._lock:
            self._collections = collections
            self.source = source
            tenant_id = self.tenant_id
        logger.info(f"Dataset replaced from {source}: {len(collections)} collections")
        if mirror and self._local_db is not None:
            try:
                self._local_db.save_dataset(collections, tenant_id=tenant_id)
            except Exception as e:
                logger.warning(f"Could not mirror dataset: {e}")

    def clear(self) -> None:
        """Drop the data and the owner binding."""
        with self._lock:
            self._collections = {}
            self.source = None
            self.tenant_id = None
            self.user_id = None

    def apply(self, event: ChangeEvent) -> None:
        """Merge one change event (remote or local) and mirror the touched collection."""
        with self._lock:
            self._collections = apply_change(self._collections, event)
            records = self._collections[event.table]
            tenant_id = self.tenant_id
        if self._local_db is not None:
            try:
                self._local_db.save_collection(event.table, records, tenant_id=tenant_id)
            except Exception as e:
                logger.warning(f"Could not mirror {event.table}: {e}")
        self._notify(event)

    def dispatch(self, table: str, kind: Any, record: Dict[str, Any]) -> ChangeEvent:
        """
        Local write entry point for feature pages.

        Applies the write optimistically and queues it for the backend. The
        later echo of the same write from the change feed is absorbed by the
        reconciler.
        """
        change_kind = ChangeKind.parse(kind)
        if change_kind is None:
            raise ValueError(f"Unknown change kind: {kind!r}")
        if record.get("id") is None:
            raise ValueError("Records must carry an id")

        event = ChangeEvent(table=table, kind=change_kind, record=dict(record))
        self.apply(event)
        if self._write_queue is not None:
            self._write_queue.enqueue(change_kind.value, table, dict(record), owner=self.owner)
        return event

    def register_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unregister_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in dataset listener: {e}")
