# =============================================================================
# clinic_core/offline/sync_engine.py
# Offline write queue and push-back to the backend
# =============================================================================
"""
SyncEngine - Pushes locally dispatched writes to the backend.

Local writes land in the in-memory store immediately (see DatasetStore) and
are queued in durable storage here, tagged with the (tenant, user) that made
them. One engine serves the whole process. Each logged-in tab registers a
pusher for its owner, built on that user's own data client; a flush only
pushes the writes of owners that currently have a pusher. Each queued
operation is retried until MAX_RETRY_ATTEMPTS.

Features:
- Durable queue (survives a tab reload)
- Background flush thread
- Per-operation attempt counting
- Sync status observable through callbacks
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from clinic_core.offline.local_database import Owner

from clinic_core.logging import LogContext, get_logger

logger = get_logger(__name__)


class SyncStatus(Enum):
    """Queue status shown in the UI."""
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class SyncState:
    """Current sync state."""
    status: SyncStatus = SyncStatus.IDLE
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0
    error_message: Optional[str] = None


Pusher = Callable[[Dict[str, Any]], None]


class SyncEngine:
    """
    Durable write-behind queue.

    Usage:
        engine = SyncEngine(local_db, is_online=lambda: cm.is_online)
        engine.register_pusher(("t1", "u-mary"), SupabaseWritePusher(client))
        engine.enqueue("INSERT", "revenue", record, owner=("t1", "u-mary"))
        engine.flush()

    `pusher(op)` receives {"operation", "table", "record_id", "data"} and
    raises on failure.
    """

    SYNC_INTERVAL = 30          # Seconds between background flushes
    MAX_RETRY_ATTEMPTS = 5      # Attempts before an operation is parked as failed
    BATCH_SIZE = 50             # Operations per flush

    def __init__(
        self,
        local_db,
        is_online: Callable[[], bool] = lambda: True,
    ):
        self._local_db = local_db
        self._pushers: Dict[Owner, Pusher] = {}
        self._pushers_lock = threading.Lock()
        self._is_online = is_online
        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._flush_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def pending_count(self) -> int:
        return self._local_db.get_pending_count()

    def pending_count_for(self, owner: Owner) -> int:
        return self._local_db.get_pending_count(owner)

    def register_pusher(self, owner: Owner, pusher: Pusher) -> None:
        """Push `owner`'s queued writes with `pusher` from now on."""
        with self._pushers_lock:
            self._pushers[owner] = pusher

    def unregister_pusher(self, owner: Owner, pusher: Optional[Pusher] = None) -> None:
        """Stop pushing for `owner`. With `pusher` given, only if it is still the registered one."""
        with self._pushers_lock:
            if pusher is None or self._pushers.get(owner) is pusher:
                self._pushers.pop(owner, None)

    # =========================================================================
    # QUEUE
    # =========================================================================

    def enqueue(
        self,
        operation: str,
        table: str,
        record: Dict[str, Any],
        owner: Owner = (None, None),
    ) -> int:
        """Queue a local write made by `owner`. Returns the queue row id."""
        record_id = record.get("id")
        sync_id = self._local_db.queue_sync(
            operation, table, str(record_id) if record_id is not None else None, record, owner=owner
        )
        self._state.pending_count = self._local_db.get_pending_count()
        logger.debug(f"Queued {operation} on {table} ({record_id})")
        self._notify_callbacks()
        return sync_id

    def flush(self) -> bool:
        """
        Push the queued operations of every registered owner, oldest first.

        Returns:
            True if nothing is left pending for the registered owners
        """
        with self._pushers_lock:
            pushers = dict(self._pushers)

        if not pushers or not self._is_online():
            self._set_status(SyncStatus.OFFLINE)
            return False

        if not self._flush_lock.acquire(blocking=False):
            return False

        self._state.last_sync = datetime.now()
        self._set_status(SyncStatus.SYNCING)
        fail_count = 0
        left = 0
        try:
            for owner, pusher in pushers.items():
                pending = self._local_db.get_pending_sync(owner, limit=self.BATCH_SIZE)
                if not pending:
                    continue
                with LogContext(logger, f"Flushing {len(pending)} queued writes"):
                    for op in pending:
                        if self._push_one(pusher, op):
                            self._state.total_synced += 1
                        else:
                            fail_count += 1
                left += self._local_db.get_pending_count(owner)
        finally:
            self._state.pending_count = self._local_db.get_pending_count()
            self._state.failed_count = self._local_db.get_failed_count()
            if fail_count:
                self._state.status = SyncStatus.ERROR
            else:
                self._state.status = SyncStatus.IDLE
                self._state.last_sync_success = datetime.now()
                self._state.error_message = None
            self._flush_lock.release()
            self._notify_callbacks()

        return fail_count == 0 and left == 0

    def _push_one(self, pusher: Pusher, op: Dict[str, Any]) -> bool:
        try:
            pusher(op)
        except Exception as e:
            logger.warning(f"Push of queued {op['operation']} on {op['table']} failed: {e}")
            self._state.error_message = str(e)
            self._local_db.mark_sync_attempt_failed(op["id"], str(e), self.MAX_RETRY_ATTEMPTS)
            return False
        self._local_db.mark_synced(op["id"])
        return True

    # =========================================================================
    # BACKGROUND FLUSH
    # =========================================================================

    def start(self) -> None:
        """Start background flush thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine"
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop background flush thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
        logger.info("Sync engine stopped")

    def _sync_loop(self) -> None:
        while not self._stop_sync.is_set():
            if self._stop_sync.wait(timeout=self.SYNC_INTERVAL):
                break
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Sync error: {e}")

    def on_connection_change(self, connection_state) -> None:
        """ConnectionManager callback: flush as soon as the backend is back."""
        if connection_state.status.value == "online":
            logger.info("Connection restored, flushing queued writes")
            self.flush()
        else:
            self._set_status(SyncStatus.OFFLINE)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _set_status(self, status: SyncStatus) -> None:
        if self._state.status != status:
            self._state.status = status
            self._notify_callbacks()

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")
