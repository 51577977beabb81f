# =============================================================================
# clinic_core/offline/sync_controller.py
# Subscription lifecycle tied to the session
# =============================================================================
"""
SyncController - opens the realtime subscriptions for an active session and
closes them when the session ends.

activate(session):
    bulk load -> (mirror -> seed on failure) -> one subscription per table
deactivate():
    invalidate the generation first, then unsubscribe and drop the feed's
    data-token authorisation

The mirror fallback only ever reads the mirror of the session's own tenant.
Subscribing and unsubscribing are asynchronous on the feed side; neither
blocks the caller.

Each subscription callback carries the generation it was opened under; an
event arriving after deactivate() (or after a different user logged in) is
dropped instead of being applied to the new session's data.
"""

from __future__ import annotations
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from clinic_core.data.reconciler import ChangeEvent
from clinic_core.data.seed import COLLECTIONS, is_usable, seed_dataset
from clinic_core.errors.exceptions import DataLoadError
from clinic_core.errors.handlers import report_error
from clinic_core.logging import get_logger

logger = get_logger(__name__)


class SyncController:
    """
    Args:
        store: DatasetStore populated by the load and updated by events
        feed: change feed with subscribe(table, callback, tenant_id) / unsubscribe(handle)
        loader: bulk loader with load_all(tenant_id)
        local_db: LocalDatabase holding the dataset mirror
        seed_factory: returns the bundled fallback dataset
    """

    def __init__(
        self,
        store,
        feed=None,
        loader=None,
        local_db=None,
        seed_factory: Callable[[], Dict[str, Any]] = seed_dataset,
        tables: Iterable[str] = COLLECTIONS,
    ):
        self._store = store
        self._feed = feed
        self._loader = loader
        self._local_db = local_db
        self._seed_factory = seed_factory
        self._tables = tuple(tables)
        self._lock = threading.RLock()
        self._generation = 0
        self._handles: Dict[str, Any] = {}
        self._active_user: Optional[str] = None
        self._feed_authorised = False

    @property
    def active_user(self) -> Optional[str]:
        return self._active_user

    @property
    def subscribed_tables(self):
        return tuple(self._handles)

    @property
    def data_source(self) -> Optional[str]:
        return self._store.source

    def activate(self, session) -> Optional[str]:
        """
        Load data and subscribe for `session`.

        Re-activating for the user already active is a no-op. A different
        user first tears down the previous user's subscriptions.

        Returns:
            Where the data came from: "remote", "mirror" or "seed"
        """
        with self._lock:
            if self._active_user == session.user_id:
                return self._store.source
        if self._active_user is not None:
            logger.info("Different user activated; closing previous subscriptions")
            self.deactivate()

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._active_user = session.user_id
            self._store.bind(session.tenant_id, session.user_id)

        source = self._initial_load(session)
        self._open_subscriptions(session, generation)
        return source

    def deactivate(self) -> None:
        """Invalidate, then unsubscribe everything and drop the in-memory data."""
        with self._lock:
            self._generation += 1
            handles = list(self._handles.values())
            self._handles = {}
            self._active_user = None
            self._store.clear()
            clear_auth = self._feed_authorised
            self._feed_authorised = False

        for handle in handles:
            try:
                self._feed.unsubscribe(handle)
            except Exception as e:
                logger.warning(f"Unsubscribe failed: {e}")

        if clear_auth:
            try:
                self._feed.set_auth(None)
            except Exception as e:
                logger.warning(f"Could not reset feed authorisation: {e}")

        if handles:
            logger.info(f"Closed {len(handles)} subscriptions")

    def _initial_load(self, session) -> str:
        if self._loader is not None:
            try:
                dataset = self._loader.load_all(session.tenant_id)
                if is_usable(dataset):
                    self._store.replace_all(dataset, source="remote")
                    return "remote"
                logger.info("Bulk load returned no usable data")
            except DataLoadError as e:
                report_error(e, "Bulk load")

        if self._local_db is not None:
            try:
                mirrored = self._local_db.load_dataset(session.tenant_id)
            except Exception as e:
                logger.warning(f"Dataset mirror unreadable: {e}")
                mirrored = None
            if is_usable(mirrored):
                self._store.replace_all(mirrored, source="mirror", mirror=False)
                return "mirror"

        self._store.replace_all(self._seed_factory(), source="seed", mirror=False)
        return "seed"

    def _open_subscriptions(self, session, generation: int) -> None:
        if self._feed is None:
            return

        if session.data_token:
            self._feed.set_auth(session.data_token)
            with self._lock:
                stale = generation != self._generation
                if not stale:
                    self._feed_authorised = True
            if stale:
                self._feed.set_auth(None)
                return

        for table in self._tables:
            try:
                handle = self._feed.subscribe(table, self._make_handler(generation), tenant_id=session.tenant_id)
            except Exception as e:
                logger.warning(f"Could not subscribe to {table}: {e}")
                continue

            with self._lock:
                if generation != self._generation:
                    stale = True
                else:
                    self._handles[table] = handle
                    stale = False
            if stale:
                # Logged out while subscribing
                self._feed.unsubscribe(handle)
                return

        logger.info(f"Subscribed to {len(self._handles)} tables")

    def _make_handler(self, generation: int) -> Callable[[ChangeEvent], None]:
        def handler(event: ChangeEvent) -> None:
            with self._lock:
                if generation != self._generation:
                    logger.debug(f"Dropping late {event.kind.value} on {event.table}")
                    return
                self._store.apply(event)
        return handler
