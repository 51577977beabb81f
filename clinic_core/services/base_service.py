# =============================================================================
# clinic_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from clinic_core.logging import get_logger, LogContext
from clinic_core.errors.exceptions import ClinicError
from clinic_core.errors.handlers import Notice, notice_for_code, report_error


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Public operations of this layer return a ServiceResult (or a plain
    value / None) instead of raising into the page.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @property
    def notice(self) -> Optional[Notice]:
        """What to show the user for a failed result."""
        if self.success:
            return None
        return notice_for_code(self.error_code, self.error)

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, ClinicError):
            return cls(
                success=False,
                error=e.message,
                error_code=e.code,
                metadata=e.details,
            )
        return cls(
            success=False,
            error=str(e),
            error_code="EXCEPTION",
        )


class BaseService(ABC):
    """
    Base class for services handed to pages: a named logger and a way to
    run an operation without letting its exception reach the page.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Starting sync"):
                controller.activate(session)
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Run `func`; a raised error is reported and returned as a failed result.
        """
        with self.log_operation(operation):
            try:
                return ServiceResult.ok(func(*args, **kwargs))
            except Exception as e:
                report_error(e, operation)
                return ServiceResult.from_exception(e)
