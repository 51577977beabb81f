# =============================================================================
# clinic_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects whether the clinic backend can be reached.

Only decides whether the remote path is *attempted*; a failed remote call
still falls back on its own.
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from clinic_core.logging import get_logger

logger = get_logger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Every configured backend host reachable
    OFFLINE = "offline"         # Nothing reachable
    DEGRADED = "degraded"       # Some configured hosts unreachable
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


def endpoints_from_urls(urls: Sequence[str]) -> List[Tuple[str, int]]:
    """(host, port) pairs for every non-empty URL."""
    endpoints = []
    for url in urls:
        if not url:
            continue
        parsed = urlparse(url)
        if parsed.hostname:
            default_port = 80 if parsed.scheme == "http" else 443
            endpoints.append((parsed.hostname, parsed.port or default_port))
    return endpoints


class ConnectionManager:
    """
    Reachability checks for the configured backend hosts.

    Usage:
        manager = ConnectionManager(endpoints_from_urls([settings.api_base_url]))
        if manager.check_connection().status is ConnectionStatus.ONLINE:
            ...
    """

    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline

    def __init__(self, endpoints: Sequence[Tuple[str, int]], timeout: float = 5.0):
        self._endpoints = list(endpoints)
        self._timeout = timeout
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._forced_offline = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_online(self) -> bool:
        """True only when every configured backend host answered the last check."""
        return self._state.status == ConnectionStatus.ONLINE

    def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        With no endpoints configured there is nothing remote to use, so the
        result is OFFLINE.
        """
        old_status = self._state.status
        self._state.last_check = datetime.now()

        if self._forced_offline or not self._endpoints:
            reachable = 0
        else:
            reachable = sum(1 for host, port in self._endpoints if self._can_reach(host, port))

        if self._endpoints and reachable == len(self._endpoints) and not self._forced_offline:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
            self._state.error_message = None
        elif reachable > 0:
            self._state.status = ConnectionStatus.DEGRADED
            self._state.consecutive_failures += 1
        else:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1

        if old_status != self._state.status:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

        return self._state

    def _can_reach(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self._timeout):
                return True
        except OSError as e:
            self._state.error_message = str(e)
            logger.debug(f"Connect to {host}:{port} failed: {e}")
            return False

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = self.CHECK_INTERVAL_ONLINE if self.is_online else self.CHECK_INTERVAL_OFFLINE
            if self._stop_monitoring.wait(timeout=interval):
                break
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def force_offline(self, offline: bool = True) -> None:
        """Force offline mode (user preference or tests)."""
        self._forced_offline = offline
        self.check_connection()
        logger.info(f"Forced offline mode: {offline}")
