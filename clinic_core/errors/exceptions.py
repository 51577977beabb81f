# =============================================================================
# clinic_core/errors/exceptions.py
# Custom Exception Hierarchy for the clinic session/sync layer
# =============================================================================

from typing import Optional, Dict, Any


class ClinicError(Exception):
    """
    Base exception for all clinic_core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "AUTH_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "CLINIC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# AUTHENTICATION EXCEPTIONS
# =============================================================================

class AuthenticationError(ClinicError):
    """Raised when credentials are rejected by an authoritative source"""

    def __init__(
        self,
        message: str,
        username: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if username:
            details["username"] = username
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="AUTH_001",
            details=details,
            **kwargs,
        )


class CredentialFormatError(ClinicError):
    """Raised when a stored password hash is not a recognised strong hash"""

    def __init__(self, message: str, username: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if username:
            details["username"] = username

        super().__init__(
            message=message,
            code="AUTH_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# TRANSPORT / SESSION EXCEPTIONS
# =============================================================================

class RemoteUnavailableError(ClinicError):
    """Raised when the backend could not be reached or gave no usable answer"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="NET_001",
            details=details,
            **kwargs,
        )


class StaleSessionError(ClinicError):
    """Raised when a session is found idle or its token expired"""

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if reason:
            details["reason"] = reason

        super().__init__(
            message=message,
            code="SESSION_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# DATA EXCEPTIONS
# =============================================================================

class DataLoadError(ClinicError):
    """Raised when the bulk dataset snapshot cannot be loaded"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if source:
            details["source"] = source

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(ClinicError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
