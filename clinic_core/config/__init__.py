# =============================================================================
# clinic_core/config/__init__.py
# =============================================================================

from .settings import ClinicSettings, get_settings, reset_settings

__all__ = ["ClinicSettings", "get_settings", "reset_settings"]
