# =============================================================================
# clinic_core/config/settings.py
# Deployment settings: Streamlit secrets -> environment -> defaults
# =============================================================================
"""
Settings are read once per process.

Expected secrets.toml format (every key optional):

    [clinic]
    api_base_url = "https://clinic.example.com"
    idle_minutes = 30
    local_db_path = "local_data/clinic.db"
    shared_store = "shared"

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import streamlit as st

from clinic_core.errors.exceptions import ConfigurationError
from clinic_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = Path("local_data") / "clinic.db"


@dataclass(frozen=True)
class ClinicSettings:
    """Deployment-wide configuration (fixed per deployment)."""
    api_base_url: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    local_db_path: Path = DEFAULT_DB_PATH

    # Session thresholds (seconds)
    idle_timeout: float = 30 * 60
    idle_warning: float = 5 * 60
    token_refresh_window: float = 2 * 60 * 60
    default_token_ttl: float = 24 * 60 * 60

    # Network
    request_timeout: float = 10.0
    connection_timeout: float = 5.0

    shared_store: str = "shared"
    cache_credentials: bool = True

    @property
    def remote_auth_enabled(self) -> bool:
        return bool(self.api_base_url)

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _read_secrets_section(name: str) -> Dict[str, Any]:
    try:
        if name in st.secrets:
            return dict(st.secrets[name])
    except Exception as e:
        # No secrets.toml outside `streamlit run`
        logger.debug(f"Secrets section [{name}] unavailable: {e}")
    return {}


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Setting '{key}' must be a number",
            config_key=key,
            expected_type="float",
        )


def load_settings(
    clinic_secrets: Optional[Dict[str, Any]] = None,
    supabase_secrets: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ClinicSettings:
    """
    Build settings from secrets sections and environment variables.

    Secrets win over the environment; anything missing falls back to the
    dataclass defaults.
    """
    clinic = _read_secrets_section("clinic") if clinic_secrets is None else clinic_secrets
    supabase = _read_secrets_section("supabase") if supabase_secrets is None else supabase_secrets
    env = os.environ if environ is None else environ

    idle_minutes = clinic.get("idle_minutes", env.get("CLINIC_IDLE_MINUTES"))
    db_path = clinic.get("local_db_path", env.get("CLINIC_LOCAL_DB"))

    kwargs: Dict[str, Any] = {
        "api_base_url": str(clinic.get("api_base_url", env.get("CLINIC_API_BASE_URL", ""))).rstrip("/"),
        "supabase_url": str(supabase.get("url", env.get("SUPABASE_URL", ""))),
        "supabase_key": str(supabase.get("key", env.get("SUPABASE_KEY", ""))),
    }
    if idle_minutes is not None:
        kwargs["idle_timeout"] = _as_float(idle_minutes, "idle_minutes") * 60
    if db_path:
        kwargs["local_db_path"] = Path(db_path)
    if "shared_store" in clinic:
        kwargs["shared_store"] = str(clinic["shared_store"])
    if "cache_credentials" in clinic:
        kwargs["cache_credentials"] = bool(clinic["cache_credentials"])

    return ClinicSettings(**kwargs)


_settings: Optional[ClinicSettings] = None


def get_settings() -> ClinicSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
        logger.info(
            f"Settings loaded (remote auth: {_settings.remote_auth_enabled}, "
            f"supabase: {_settings.supabase_enabled})"
        )
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests, secrets reload)."""
    global _settings
    _settings = None
