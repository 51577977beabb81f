# =============================================================================
# clinic_core/errors/__init__.py
# Centralized Error Handling for the clinic session/sync layer
# =============================================================================

from .exceptions import (
    ClinicError,
    AuthenticationError,
    CredentialFormatError,
    RemoteUnavailableError,
    StaleSessionError,
    DataLoadError,
    ConfigurationError,
)

from .handlers import (
    Notice,
    OFFLINE_LOGIN,
    SEED_DATA,
    MIRROR_DATA,
    notice_for,
    notice_for_code,
    show_notice,
    report_error,
    error_boundary,
)

__all__ = [
    # Exceptions
    "ClinicError",
    "AuthenticationError",
    "CredentialFormatError",
    "RemoteUnavailableError",
    "StaleSessionError",
    "DataLoadError",
    "ConfigurationError",
    # Handlers
    "Notice",
    "OFFLINE_LOGIN",
    "SEED_DATA",
    "MIRROR_DATA",
    "notice_for",
    "notice_for_code",
    "show_notice",
    "report_error",
    "error_boundary",
]
