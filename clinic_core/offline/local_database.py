# =============================================================================
# clinic_core/offline/local_database.py
# Durable local SQLite storage (outlives the tab)
# =============================================================================
"""
LocalDatabase - SQLite-backed durable storage for the offline paths.

Holds:
- the cached credential directory used by offline login
- the last known tenant config
- a mirrored copy of the last known dataset, one row per (tenant, collection)
- the queue of local writes waiting to be pushed to the backend, each row
  tagged with the (tenant, user) that made it

Rows are always read back for one tenant or one owner. A tab never sees the
mirror of another tenant, and a user's queued writes are only pushed under
that user's own credentials.
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from clinic_core.logging import get_logger
from clinic_core.state.typed_state import CredentialRecord

logger = get_logger(__name__)

# (tenant_id, user_id) of the session that queued a write
Owner = Tuple[Optional[str], Optional[str]]


def _key(value: Optional[str]) -> str:
    return value or ""


class LocalDatabase:
    """
    Local SQLite database for offline data storage.
    """

    SCHEMA = {
        "credentials": """
            CREATE TABLE IF NOT EXISTS credentials (
                username TEXT PRIMARY KEY,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL,
                stores_json TEXT,
                active INTEGER DEFAULT 1,
                user_id TEXT,
                display_name TEXT,
                tenant_id TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "dataset_mirror": """
            CREATE TABLE IF NOT EXISTS dataset_mirror (
                tenant_id TEXT NOT NULL DEFAULT '',
                table_name TEXT NOT NULL,
                records_json TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (tenant_id, table_name)
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL DEFAULT '',
                user_id TEXT NOT NULL DEFAULT '',
                operation TEXT NOT NULL,
                table_name TEXT NOT NULL,
                record_id TEXT,
                data_json TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                status TEXT DEFAULT 'pending',
                error_message TEXT
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    TENANT_CONFIG_KEY = "tenant_config"

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Path):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._initialized = False

    @classmethod
    def get_instance(cls, db_path: Path) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            self._migrate(conn)

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Bring databases created before owner tagging up to date."""
        mirror_cols = {row[1] for row in conn.execute("PRAGMA table_info(dataset_mirror)")}
        if "tenant_id" not in mirror_cols:
            # Untagged mirror rows cannot be attributed to a tenant
            conn.execute("DROP TABLE dataset_mirror")
            conn.execute(self.SCHEMA["dataset_mirror"])
            logger.info("Dropped untagged dataset mirror")

        queue_cols = {row[1] for row in conn.execute("PRAGMA table_info(sync_queue)")}
        for column in ("tenant_id", "user_id"):
            if column not in queue_cols:
                conn.execute(f"ALTER TABLE sync_queue ADD COLUMN {column} TEXT NOT NULL DEFAULT ''")

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        conn = self._get_connection()
        cursor = conn.execute(sql, params or [])
        return cursor.fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    # =========================================================================
    # CREDENTIAL DIRECTORY
    # =========================================================================

    def get_credential(self, username: str) -> Optional[CredentialRecord]:
        """Look up a cached credential record (active or not)."""
        rows = self.query("SELECT * FROM credentials WHERE username = ?", [username])
        if not rows:
            return None

        row = rows[0]
        try:
            stores = json.loads(row["stores_json"]) if row["stores_json"] else []
        except json.JSONDecodeError:
            logger.warning(f"Corrupt store list for cached user {username}")
            stores = []

        return CredentialRecord(
            username=row["username"],
            password_hash=row["password_hash"],
            role=row["role"],
            assigned_stores=frozenset(stores),
            active=bool(row["active"]),
            user_id=row["user_id"],
            display_name=row["display_name"],
            tenant_id=row["tenant_id"],
        )

    def upsert_credential(self, record: CredentialRecord) -> None:
        """Insert or replace a credential record."""
        self.execute(
            """
            INSERT OR REPLACE INTO credentials
                (username, password_hash, role, stores_json, active,
                 user_id, display_name, tenant_id, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.username,
                record.password_hash,
                record.role,
                json.dumps(sorted(record.assigned_stores)),
                1 if record.active else 0,
                record.user_id,
                record.display_name,
                record.tenant_id,
                datetime.now().isoformat(),
            ],
        )

    def deactivate_credential(self, username: str) -> bool:
        return self.execute(
            "UPDATE credentials SET active = 0 WHERE username = ?", [username]
        ) > 0

    # =========================================================================
    # DATASET MIRROR
    # =========================================================================

    _MIRROR_UPSERT = """
        INSERT OR REPLACE INTO dataset_mirror (tenant_id, table_name, records_json, updated_at)
        VALUES (?, ?, ?, ?)
    """

    def save_collection(self, table: str, records: List[Dict[str, Any]], tenant_id: Optional[str] = None) -> None:
        """Mirror one collection of `tenant_id` (whole-list replace)."""
        self.execute(
            self._MIRROR_UPSERT,
            [_key(tenant_id), table, json.dumps(records, default=str), datetime.now().isoformat()],
        )

    def save_dataset(self, dataset: Dict[str, List[Dict[str, Any]]], tenant_id: Optional[str] = None) -> None:
        """Mirror a full snapshot of `tenant_id` in one transaction."""
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            conn.execute("DELETE FROM dataset_mirror WHERE tenant_id = ?", [_key(tenant_id)])
            for table, records in dataset.items():
                conn.execute(
                    self._MIRROR_UPSERT,
                    [_key(tenant_id), table, json.dumps(list(records), default=str), now],
                )

    def load_dataset(self, tenant_id: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Read back the mirror of `tenant_id`; unreadable collections are skipped."""
        dataset: Dict[str, List[Dict[str, Any]]] = {}
        rows = self.query(
            "SELECT table_name, records_json FROM dataset_mirror WHERE tenant_id = ?",
            [_key(tenant_id)],
        )
        for row in rows:
            try:
                records = json.loads(row["records_json"])
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt mirror for {row['table_name']}")
                continue
            if isinstance(records, list):
                dataset[row["table_name"]] = records
        return dataset

    # =========================================================================
    # SYNC QUEUE MANAGEMENT
    # =========================================================================

    def queue_sync(
        self,
        operation: str,
        table: str,
        record_id: Optional[str],
        data: Dict[str, Any],
        owner: Owner = (None, None),
    ) -> int:
        """Add a local write made by `owner` to the sync queue."""
        tenant_id, user_id = owner
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue
                    (tenant_id, user_id, operation, table_name, record_id, data_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    _key(tenant_id),
                    _key(user_id),
                    operation,
                    table,
                    record_id,
                    json.dumps(data, default=str),
                    datetime.now().isoformat(),
                ],
            )
            return cursor.lastrowid

    def get_pending_sync(self, owner: Owner = (None, None), limit: int = 100) -> List[Dict]:
        """Pending operations queued by `owner`, oldest first."""
        tenant_id, user_id = owner
        rows = self.query(
            """
            SELECT * FROM sync_queue
            WHERE status = 'pending' AND tenant_id = ? AND user_id = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            [_key(tenant_id), _key(user_id), limit]
        )
        return [
            {
                "id": row["id"],
                "operation": row["operation"],
                "table": row["table_name"],
                "record_id": row["record_id"],
                "data": json.loads(row["data_json"]) if row["data_json"] else {},
                "created_at": row["created_at"],
                "attempts": row["attempts"],
            }
            for row in rows
        ]

    def mark_synced(self, sync_id: int) -> None:
        """Mark a sync operation as completed."""
        self.execute("UPDATE sync_queue SET status = 'synced' WHERE id = ?", [sync_id])

    def mark_sync_attempt_failed(self, sync_id: int, error: str, max_attempts: int) -> None:
        """Count a failed attempt; give up once `max_attempts` is reached."""
        self.execute(
            """
            UPDATE sync_queue
            SET attempts = attempts + 1,
                last_attempt = ?,
                error_message = ?,
                status = CASE WHEN attempts + 1 >= ? THEN 'failed' ELSE 'pending' END
            WHERE id = ?
            """,
            [datetime.now().isoformat(), error, max_attempts, sync_id]
        )

    def _count(self, status: str, owner: Optional[Owner]) -> int:
        sql = "SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?"
        params: List[Any] = [status]
        if owner is not None:
            sql += " AND tenant_id = ? AND user_id = ?"
            params += [_key(owner[0]), _key(owner[1])]
        result = self.query(sql, params)
        return result[0]["count"] if result else 0

    def get_pending_count(self, owner: Optional[Owner] = None) -> int:
        """Pending operations of `owner`, or of everyone when owner is None."""
        return self._count("pending", owner)

    def get_failed_count(self, owner: Optional[Owner] = None) -> int:
        return self._count("failed", owner)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        result = self.query("SELECT value FROM app_settings WHERE key = ?", [key])
        if result:
            try:
                return json.loads(result[0]["value"])
            except json.JSONDecodeError:
                return result[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        value_str = json.dumps(value) if not isinstance(value, str) else value
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value_str, datetime.now().isoformat()]
        )

    def close(self) -> None:
        """Close database connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database(db_path: Optional[Path] = None) -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        if db_path is None:
            from clinic_core.config import get_settings
            db_path = get_settings().local_db_path
        _local_database = LocalDatabase.get_instance(db_path)
        _local_database.initialize()
    return _local_database
