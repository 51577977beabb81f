# =============================================================================
# clinic_core/state/session.py
# Tab-scoped volatile storage backed by st.session_state
# =============================================================================
"""
Streamlit's session_state lives exactly as long as the browser tab's
websocket session, which is the lifetime the Session record needs: it is
never written to disk and disappears on a full restart.
"""

from __future__ import annotations
from typing import Any, MutableMapping, Optional

from clinic_core.logging import get_logger

logger = get_logger(__name__)

# Central registry for session-state keys owned by clinic_core.
SESSION_KEY = "clinic_session"
TENANT_KEY = "clinic_tenant"
STORE_SELECTOR_KEY = "clinic_active_store"
SERVICE_KEY = "clinic_session_service"
NOTICE_KEY = "clinic_login_notice"

SESSION_DEFAULTS = {
    STORE_SELECTOR_KEY: None,
}

AUTH_KEYS = (SESSION_KEY, TENANT_KEY)


class TabStorage:
    """
    Thin wrapper around the tab's session_state.

    Any MutableMapping works as a backend, so tests pass a plain dict.
    """

    def __init__(self, backend: Optional[MutableMapping[str, Any]] = None):
        if backend is None:
            import streamlit as st
            backend = st.session_state
        self._backend = backend

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self._backend.get(key, default)
        except Exception as e:
            logger.debug(f"Tab storage read failed for {key}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        self._backend[key] = value

    def remove(self, key: str) -> None:
        if key in self._backend:
            del self._backend[key]

    def __contains__(self, key: str) -> bool:
        return key in self._backend

    def purge_auth(self) -> None:
        """Drop the session, its tokens and the tenant config."""
        for key in AUTH_KEYS:
            self.remove(key)


def init_state(storage: TabStorage) -> None:
    """Initialize tab state with defaults."""
    for k, v in SESSION_DEFAULTS.items():
        if k not in storage:
            storage.set(k, v)
