# =============================================================================
# clinic_core/data/supabase_client.py
# Supabase collaborators: client factory, bulk loader, write pusher, change feed
# =============================================================================

from __future__ import annotations
import asyncio
import concurrent.futures
import inspect
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from supabase import acreate_client, create_client

from clinic_core.data.reconciler import ChangeEvent
from clinic_core.data.seed import COLLECTIONS
from clinic_core.errors.exceptions import DataLoadError
from clinic_core.logging import LogContext, get_logger

logger = get_logger(__name__)

TENANT_FIELD = "tenant_id"


def get_supabase_client(settings):
    """
    Create a Supabase client from settings.

    Each tab gets its own client: the client carries the logged-in user's
    data token, which must never be shared with another tab.

    Returns:
        Supabase client instance or None if not configured
    """
    if not settings.supabase_enabled:
        logger.info("Supabase not configured; running without a data backend")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None


def apply_data_token(client, data_token: Optional[str], anon_key: Optional[str] = None) -> None:
    """
    Run subsequent table queries with the user's row-level-security token.

    A None token puts the client back on the anon key.
    """
    token = data_token or anon_key
    if client is None or not token:
        return
    try:
        client.postgrest.auth(token)
    except Exception as e:
        logger.warning(f"Could not apply data token: {e}")


class SupabaseDatasetLoader:
    """
    Bulk initial load: every collection, filtered to the tenant.

    Usage:
        loader = SupabaseDatasetLoader(client)
        dataset = loader.load_all(tenant_id="t1")
    """

    BATCH_SIZE = 1000  # Supabase row limit per request

    def __init__(self, client, tables: Iterable[str] = COLLECTIONS):
        self.client = client
        self.tables = tuple(tables)

    def is_connected(self) -> bool:
        return self.client is not None

    def load_all(self, tenant_id: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        if not self.is_connected():
            raise DataLoadError("No data backend configured", source="supabase")

        with LogContext(logger, f"Loading {len(self.tables)} collections"):
            return {table: self.fetch_table(table, tenant_id) for table in self.tables}

    def fetch_table(self, table: str, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch ALL rows of one table (pages through the row limit)."""
        all_records: List[Dict[str, Any]] = []
        offset = 0
        try:
            while True:
                query = self.client.table(table).select("*")
                if tenant_id:
                    query = query.eq(TENANT_FIELD, tenant_id)
                response = query.range(offset, offset + self.BATCH_SIZE - 1).execute()

                if not response.data:
                    break
                all_records.extend(response.data)
                if len(response.data) < self.BATCH_SIZE:
                    break
                offset += self.BATCH_SIZE
        except Exception as e:
            raise DataLoadError(f"Error fetching {table}: {e}", table=table, source="supabase") from e
        return all_records


class SupabaseWritePusher:
    """
    SyncEngine pusher: replays one queued write against its table.

    INSERT fails on the server for an id that already exists. UPDATE and
    DELETE only touch the row with the queued id.
    """

    def __init__(self, client):
        self.client = client

    def __call__(self, op: Dict[str, Any]) -> None:
        table = self.client.table(op["table"])
        data = op.get("data") or {}
        record_id = op.get("record_id") or data.get("id")
        operation = op["operation"]

        if operation == "INSERT":
            table.insert(data).execute()
        elif record_id is None:
            logger.warning(f"Dropping queued {operation} on {op['table']} without an id")
        elif operation == "UPDATE":
            table.update(data).eq("id", record_id).execute()
        elif operation == "DELETE":
            table.delete().eq("id", record_id).execute()
        else:
            raise ValueError(f"Unknown queued operation: {operation!r}")


class RealtimeLoop:
    """
    One asyncio loop on a daemon thread, shared by every tab's change feed.
    """

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        with self._start_lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    daemon=True,
                    name="SupabaseRealtime"
                )
                self._thread.start()
        return self._loop

    def submit(self, coro) -> concurrent.futures.Future:
        """Schedule `coro` on the loop without waiting for it."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self) -> None:
        with self._start_lock:
            loop, self._loop = self._loop, None
            thread, self._thread = self._thread, None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=5)


@dataclass
class FeedHandle:
    """
    Handle for one table subscription.

    `future` completes once the channel has joined; `channel` is set as soon
    as the channel object exists, so a join that is still pending can be
    torn down too.
    """
    table: str
    future: Optional[concurrent.futures.Future] = None
    channel: Any = None


class SupabaseChangeFeed:
    """
    Realtime `postgres_changes` feed.

    Realtime needs the async client, which runs on a RealtimeLoop. Nothing
    here waits for the network: subscribe returns a handle at once and
    unsubscribe / set_auth are scheduled in order on the loop. Callbacks run
    on the loop thread and receive ChangeEvents.

    Usage:
        feed = SupabaseChangeFeed(settings.supabase_url, settings.supabase_key, loop=shared_loop)
        handle = feed.subscribe("revenue", on_event, tenant_id="t1")
        feed.unsubscribe(handle)
    """

    JOIN_TIMEOUT = 10  # Seconds a channel may take to join before it is dropped

    def __init__(
        self,
        url: str,
        key: str,
        loop: Optional[RealtimeLoop] = None,
        client_factory: Callable[[str, str], Any] = acreate_client,
    ):
        self._url = url
        self._key = key
        self._loop = loop or RealtimeLoop()
        self._client_factory = client_factory
        self._client = None
        self._client_lock: Optional[asyncio.Lock] = None

    async def _get_client(self):
        if self._client_lock is None:
            self._client_lock = asyncio.Lock()
        async with self._client_lock:
            if self._client is None:
                self._client = await self._client_factory(self._url, self._key)
        return self._client

    def _schedule(self, coro, what: str) -> concurrent.futures.Future:
        future = self._loop.submit(coro)
        future.add_done_callback(lambda f: _log_failure(f, what))
        return future

    def set_auth(self, data_token: Optional[str]) -> None:
        """Authorise the realtime socket with the user's data token; None goes back to the anon key."""
        token = data_token or self._key

        async def _set():
            client = await self._get_client()
            result = client.realtime.set_auth(token)
            if inspect.isawaitable(result):
                await result

        self._schedule(_set(), "authorise realtime feed")

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        tenant_id: Optional[str] = None,
    ) -> FeedHandle:
        handle = FeedHandle(table=table)

        def on_change(payload):
            event = ChangeEvent.from_payload(table, payload)
            if event is None:
                logger.debug(f"Unrecognised realtime payload on {table}")
                return
            callback(event)

        async def _subscribe():
            client = await self._get_client()
            channel = client.channel(f"{table}_changes_{tenant_id or 'all'}")
            kwargs = {"event": "*", "schema": "public", "table": table, "callback": on_change}
            if tenant_id:
                kwargs["filter"] = f"{TENANT_FIELD}=eq.{tenant_id}"
            channel.on_postgres_changes(**kwargs)
            handle.channel = channel
            try:
                await asyncio.wait_for(channel.subscribe(), timeout=self.JOIN_TIMEOUT)
            except asyncio.TimeoutError:
                handle.channel = None
                await self._remove_channel(client, channel)
                raise
            logger.debug(f"Subscribed to {table} changes")

        handle.future = self._schedule(_subscribe(), f"subscribe to {table}")
        return handle

    def unsubscribe(self, handle: FeedHandle) -> None:
        """Cancel a pending join and remove the channel, without waiting."""
        if handle.future is not None:
            handle.future.cancel()

        async def _remove():
            # Let a cancelled join unwind before looking at its channel
            await asyncio.sleep(0)
            channel, handle.channel = handle.channel, None
            if channel is None:
                return
            client = await self._get_client()
            await self._remove_channel(client, channel)
            logger.debug(f"Unsubscribed from {handle.table} changes")

        self._schedule(_remove(), f"unsubscribe from {handle.table}")

    @staticmethod
    async def _remove_channel(client, channel) -> None:
        result = client.remove_channel(channel)
        if inspect.isawaitable(result):
            await result


def _log_failure(future: concurrent.futures.Future, what: str) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(f"Could not {what}: {error}")
