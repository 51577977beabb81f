# =============================================================================
# clinic_core/services/session_service.py
# Facade handed to feature pages
# =============================================================================
"""
SessionService - the only object feature pages talk to.

Pages get:
- get_current_session() / has_capability(action)
- scoped_view(): the role/store-narrowed dataset, rebuilt on every call
- dispatch(table, kind, record): the local write path
- login / logout / password reset / tenant config / sync status

One SessionService exists per tab. The SQLite database, connectivity
monitor, write queue and realtime event loop are shared by every tab of the
process (see get_shared_resources); anything that carries a user's token
(data client, change feed, session) belongs to one tab only.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import streamlit as st

from clinic_core.api import AuthAPIConnector
from clinic_core.auth.authentication import CredentialVerifier, Rejected, RemoteVerified
from clinic_core.auth.session_manager import SessionManager
from clinic_core.config import get_settings
from clinic_core.data.dataset_store import DatasetStore
from clinic_core.data.reconciler import ChangeKind
from clinic_core.data.scoping import ScopedDataset, is_visible, scope
from clinic_core.data.supabase_client import (
    RealtimeLoop,
    SupabaseChangeFeed,
    SupabaseDatasetLoader,
    SupabaseWritePusher,
    apply_data_token,
    get_supabase_client,
)
from clinic_core.errors.handlers import MIRROR_DATA, OFFLINE_LOGIN, SEED_DATA, Notice, notice_for, report_error
from clinic_core.offline.connection_manager import ConnectionManager, ConnectionStatus, endpoints_from_urls
from clinic_core.offline.local_database import LocalDatabase, get_local_database
from clinic_core.offline.sync_controller import SyncController
from clinic_core.offline.sync_engine import SyncEngine, SyncState
from clinic_core.services.base_service import BaseService, ServiceResult
from clinic_core.state.session import NOTICE_KEY, SERVICE_KEY, STORE_SELECTOR_KEY, TabStorage, init_state
from clinic_core.state.typed_state import Session, TenantConfig

# table -> capability needed to write it
WRITE_CAPABILITIES = {
    "revenue": "editRevenue",
    "expenses": "editExpenses",
    "arap": "editARAP",
    "payslips": "editPayroll",
    "consultations": "editEMR",
    "packages": "editPackages",
}

_ALL_STORES = object()


@dataclass
class SharedResources:
    """Process-wide collaborators shared by every tab."""
    local_db: LocalDatabase
    connection: ConnectionManager
    sync_engine: SyncEngine
    realtime_loop: RealtimeLoop


@st.cache_resource
def get_shared_resources(_settings=None) -> SharedResources:
    """
    Create the shared collaborators once per process.

    The monitor and flush threads are started here, so opening more tabs
    does not start more threads.
    """
    settings = _settings or get_settings()
    local_db = get_local_database(settings.local_db_path)

    connection = ConnectionManager(
        endpoints_from_urls([settings.api_base_url, settings.supabase_url]),
        timeout=settings.connection_timeout,
    )
    engine = SyncEngine(local_db, is_online=lambda: connection.is_online)
    connection.register_callback(engine.on_connection_change)
    connection.start_monitoring()
    engine.start()

    return SharedResources(
        local_db=local_db,
        connection=connection,
        sync_engine=engine,
        realtime_loop=RealtimeLoop(),
    )


class SessionService(BaseService):
    """
    Wires the session manager, dataset store and sync controller together.

    Use `SessionService.build()` for the real collaborators; tests pass
    their own.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        store: DatasetStore,
        controller: SyncController,
        storage: TabStorage,
        settings=None,
        local_db: Optional[LocalDatabase] = None,
        connector: Optional[AuthAPIConnector] = None,
        sync_engine: Optional[SyncEngine] = None,
        data_client=None,
    ):
        super().__init__()
        self.session_manager = session_manager
        self.store = store
        self.controller = controller
        self.storage = storage
        self.settings = settings or get_settings()
        self.local_db = local_db
        self.connector = connector
        self.sync_engine = sync_engine
        self.data_client = data_client
        self._pusher: Optional[SupabaseWritePusher] = None
        init_state(storage)
        session_manager.register_logout_callback(self._on_logout)

    @classmethod
    def build(cls, settings=None, storage: Optional[TabStorage] = None) -> SessionService:
        """Create the tab's service on top of the shared collaborators."""
        settings = settings or get_settings()
        storage = storage or TabStorage()
        shared = get_shared_resources(settings)
        connection = shared.connection

        connector = AuthAPIConnector.from_settings(settings) if settings.remote_auth_enabled else None
        verifier = CredentialVerifier(
            connector,
            shared.local_db,
            settings,
            is_online=lambda: connection.check_connection().status is not ConnectionStatus.OFFLINE,
        )
        manager = SessionManager(verifier, storage, settings)

        client = get_supabase_client(settings)
        feed = None
        if settings.supabase_enabled:
            feed = SupabaseChangeFeed(settings.supabase_url, settings.supabase_key, loop=shared.realtime_loop)

        store = DatasetStore(local_db=shared.local_db, write_queue=shared.sync_engine)
        controller = SyncController(
            store,
            feed=feed,
            loader=SupabaseDatasetLoader(client) if client is not None else None,
            local_db=shared.local_db,
        )
        return cls(
            manager, store, controller, storage,
            settings=settings,
            local_db=shared.local_db,
            connector=connector,
            sync_engine=shared.sync_engine,
            data_client=client,
        )

    # =========================================================================
    # SESSION
    # =========================================================================

    def get_current_session(self) -> Optional[Session]:
        return self.session_manager.get_current_session()

    def has_capability(self, action: str) -> bool:
        return self.session_manager.has_capability(action)

    def touch_activity(self) -> None:
        self.session_manager.touch_activity()

    def idle_warning_due(self) -> bool:
        return self.session_manager.idle_warning_due()

    def refresh_token_if_needed(self) -> bool:
        return self.session_manager.refresh_token_if_needed(self.connector)

    def login(self, username: str, password: str) -> ServiceResult:
        """
        Log in and start syncing.

        Returns:
            ServiceResult with the Session as data and metadata
            {"mode": "online" | "offline", "data_source": ..., "notices": [Notice]}
        """
        self.storage.remove(NOTICE_KEY)
        result = self.session_manager.login(username, password)
        if isinstance(result, Rejected):
            return ServiceResult.fail(result.message, error_code=result.reason.value.upper())

        session = result.session
        online = isinstance(result, RemoteVerified)
        if online:
            apply_data_token(self.data_client, session.data_token, self.settings.supabase_key)
            self._register_pusher(session)
        source = self.start_sync(session)

        notices: List[Notice] = []
        if not online:
            notices.append(OFFLINE_LOGIN)
        if source == "seed":
            notices.append(SEED_DATA)
        elif source == "mirror":
            notices.append(MIRROR_DATA)
        metadata: Dict[str, Any] = {
            "mode": "online" if online else "offline",
            "data_source": source,
            "notices": notices,
        }
        return ServiceResult.ok(session, metadata=metadata)

    def logout(self, reason: str = "explicit") -> None:
        self.session_manager.logout(reason=reason)

    def pop_notice(self) -> Optional[Notice]:
        """Why the last session ended, if it ended on its own. Shown once."""
        notice = self.storage.get(NOTICE_KEY)
        self.storage.remove(NOTICE_KEY)
        return notice

    def _on_logout(self, reason: str) -> None:
        owner = self.store.owner
        self.stop_sync()
        apply_data_token(self.data_client, None, self.settings.supabase_key)
        if self.sync_engine is not None and self._pusher is not None:
            self.sync_engine.unregister_pusher(owner, self._pusher)
        self._pusher = None
        self.storage.remove(STORE_SELECTOR_KEY)

        ended = self.session_manager.last_ended
        if ended is not None and ended.details.get("reason") == reason:
            self.storage.set(NOTICE_KEY, notice_for(ended))

    def _register_pusher(self, session: Session) -> None:
        if self.sync_engine is None or self.data_client is None:
            return
        self._pusher = SupabaseWritePusher(self.data_client)
        self.sync_engine.register_pusher((session.tenant_id, session.user_id), self._pusher)

    # =========================================================================
    # SYNC
    # =========================================================================

    def start_sync(self, session: Session) -> Optional[str]:
        """Bulk load and subscribe for `session`. Returns the data source."""
        try:
            with self.log_operation("Starting sync"):
                return self.controller.activate(session)
        except Exception as e:
            report_error(e, "Sync activation")
            return None

    def stop_sync(self) -> None:
        try:
            self.controller.deactivate()
        except Exception as e:
            report_error(e, "Sync teardown")

    @property
    def sync_state(self) -> Optional[SyncState]:
        return self.sync_engine.state if self.sync_engine is not None else None

    def pending_writes(self) -> int:
        """Queued writes of the current user that have not reached the backend."""
        if self.sync_engine is None or self.store.user_id is None:
            return 0
        return self.sync_engine.pending_count_for(self.store.owner)

    def flush_pending(self) -> bool:
        if self.sync_engine is None:
            return False
        return self.sync_engine.flush()

    # =========================================================================
    # DATA
    # =========================================================================

    @property
    def active_store(self) -> Optional[str]:
        return self.storage.get(STORE_SELECTOR_KEY)

    def set_active_store(self, store: Optional[str]) -> None:
        self.storage.set(STORE_SELECTOR_KEY, store or None)

    def scoped_view(self, active_store: Any = _ALL_STORES) -> ScopedDataset:
        """Scoped projection for the current session and store selection."""
        if active_store is _ALL_STORES:
            active_store = self.active_store
        return scope(
            self.store.snapshot(),
            self.get_current_session(),
            active_store,
            shared_store=self.settings.shared_store,
        )

    def dispatch(self, table: str, kind: Any, record: Dict[str, Any]) -> ServiceResult:
        """
        Local write entry point.

        The role needs the table's write capability. The record being
        replaced or deleted must already be in the writer's scope, and so
        must the record being written. An INSERT may not reuse an id that
        already exists.
        """
        session = self.get_current_session()
        if session is None:
            return ServiceResult.fail("Not logged in", error_code="SESSION_001")

        change = ChangeKind.parse(kind)
        record_id = record.get("id") if record else None
        if change is None or record_id is None:
            return ServiceResult.fail(f"Invalid {kind!r} write on {table}", error_code="INVALID")

        if self.store.user_id != session.user_id:
            return ServiceResult.fail("Data is not loaded for this session", error_code="SESSION_001")

        capability = WRITE_CAPABILITIES.get(table)
        if capability is not None and not self.session_manager.has_capability(capability):
            return ServiceResult.fail(f"No permission to edit {table}", error_code="FORBIDDEN")

        shared_store = self.settings.shared_store
        existing = self.store.find(table, record_id)
        if change is ChangeKind.INSERT and existing is not None:
            return ServiceResult.fail(f"{table} record {record_id} already exists", error_code="CONFLICT")
        if change is not ChangeKind.INSERT and existing is None:
            return ServiceResult.fail(f"No {table} record {record_id}", error_code="NOT_FOUND")
        if existing is not None and not is_visible(existing, table, session, shared_store=shared_store):
            return ServiceResult.fail(f"Record outside your scope for {table}", error_code="FORBIDDEN")
        if change is not ChangeKind.DELETE and not is_visible(record, table, session, shared_store=shared_store):
            return ServiceResult.fail(f"Record outside your scope for {table}", error_code="FORBIDDEN")

        self.session_manager.touch_activity()
        return self.safe_execute(f"Dispatch {change.value} on {table}", self.store.dispatch, table, change, record)

    def tenant_config(self) -> TenantConfig:
        """Tab config, then the durable cached config, then defaults."""
        config = self.session_manager.tenant_config()
        if config is not None:
            return config

        if self.local_db is not None:
            try:
                cached = self.local_db.get_setting(self.local_db.TENANT_CONFIG_KEY)
            except Exception as e:
                self.logger.warning(f"Cached tenant config unreadable: {e}")
                cached = None
            if isinstance(cached, dict):
                return TenantConfig.from_dict(cached)

        return TenantConfig.defaults()

    # =========================================================================
    # PASSWORD RESET
    # =========================================================================

    def request_password_reset(self, username: Optional[str] = None, email: Optional[str] = None) -> ServiceResult:
        if self.connector is None:
            return ServiceResult.fail("Password reset needs the clinic server", error_code="NET_001")
        return self.connector.request_password_reset(username=username, email=email)

    def confirm_password_reset(self, token: str, new_password: str) -> ServiceResult:
        if self.connector is None:
            return ServiceResult.fail("Password reset needs the clinic server", error_code="NET_001")
        return self.connector.confirm_password_reset(token, new_password)


def get_session_service(storage: Optional[TabStorage] = None, settings=None) -> SessionService:
    """Get the SessionService of the current tab, creating it on first use."""
    storage = storage or TabStorage()
    service = storage.get(SERVICE_KEY)
    if service is None:
        service = SessionService.build(settings=settings, storage=storage)
        storage.set(SERVICE_KEY, service)
    return service
