# =============================================================================
# clinic_core/offline/__init__.py
# Offline resilience for the clinic session/sync layer
# =============================================================================
"""
Offline Resilience Module

Architecture:
------------
┌──────────────────────────────────────────────────────────────┐
│                      SyncController                          │
│       (subscriptions live exactly as long as the session)    │
└──────────────────────────────────────────────────────────────┘
          │ bulk load               │ change events
          ▼                         ▼
┌──────────────────┐       ┌──────────────────┐
│ Supabase loader  │       │   DatasetStore   │──► mirror
│ (mirror, seed)   │       │ (copy-on-write)  │      │
└──────────────────┘       └──────────────────┘      ▼
                                    │ local writes ┌──────────┐
                                    └─────────────►│  SQLite  │
                                                   │ (Local)  │
┌──────────────────┐       ┌──────────────────┐    └──────────┘
│  ConnectionMgr   │──────►│   SyncEngine     │◄────────┘
│ (Online/Offline) │       │ (write queue)    │
└──────────────────┘       └──────────────────┘

Usage:
------
from clinic_core.offline import SyncController, get_local_database

controller = SyncController(store, feed=feed, loader=loader, local_db=get_local_database())
controller.activate(session)   # on login
controller.deactivate()        # on logout
"""

from clinic_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    endpoints_from_urls,
)

from clinic_core.offline.local_database import (
    LocalDatabase,
    get_local_database,
)

from clinic_core.offline.sync_engine import (
    SyncEngine,
    SyncState,
    SyncStatus,
)

from clinic_core.offline.sync_controller import SyncController

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "endpoints_from_urls",
    # Local Database
    "LocalDatabase",
    "get_local_database",
    # Write Queue
    "SyncEngine",
    "SyncState",
    "SyncStatus",
    # Subscriptions
    "SyncController",
]
