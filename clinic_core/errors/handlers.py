# =============================================================================
# clinic_core/errors/handlers.py
# Error reporting: log an error once, turn it into a user-facing notice
# =============================================================================
"""
Errors raised inside this layer never reach a page as exceptions. Where they
are caught they go through `report_error`, which logs them and returns the
`Notice` a page should show; pages render notices with `show_notice`.

Usage:
    except RemoteUnavailableError as e:
        notice = report_error(e, "Remote login")
    ...
    show_notice(notice)
"""

from __future__ import annotations
import functools
import logging
from dataclasses import dataclass
from typing import Optional, Callable, TypeVar, Any
import streamlit as st

from clinic_core.logging import get_logger
from .exceptions import ClinicError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Notice:
    """A message for the page: level is "info", "warning" or "error"."""
    level: str
    message: str


# error code -> what the user is told
NOTICE_TEXT = {
    "AUTH_001": "Username or password not accepted.",
    "AUTH_002": "This account cannot sign in offline. Connect to the clinic server and try again.",
    "NET_001": "Clinic server unreachable.",
    "SESSION_001": "Your session has ended. Please log in again.",
    "DATA_001": "Live data unavailable.",
    "CONFIG_001": "The clinic app is misconfigured. Please contact support.",
}

OFFLINE_LOGIN = Notice("warning", "Clinic server unreachable: signed in offline.")
SEED_DATA = Notice("warning", "Live data unavailable: showing an empty workspace.")
MIRROR_DATA = Notice("info", "Live data unavailable: showing the last saved copy.")


def notice_for_code(code: Optional[str], fallback: Optional[str] = None) -> Notice:
    """Notice for an error code; unknown codes show `fallback`."""
    message = NOTICE_TEXT.get(code or "") or fallback or "Something went wrong."
    level = "error" if code == "CONFIG_001" else "warning"
    return Notice(level, message)


def notice_for(error: Exception) -> Notice:
    """Notice for an exception. Unrecoverable clinic errors are shown as errors."""
    if isinstance(error, ClinicError):
        notice = notice_for_code(error.code, error.message)
        if not error.recoverable:
            return Notice("error", notice.message)
        return notice
    return Notice("error", "Something went wrong.")


def show_notice(notice: Optional[Notice]) -> None:
    """Render a notice in the current page."""
    if notice is None:
        return
    if notice.level == "error":
        st.error(notice.message)
    elif notice.level == "warning":
        st.warning(notice.message)
    else:
        st.info(notice.message)


def report_error(error: Exception, operation: str, show: bool = False) -> Notice:
    """
    Log `error` and return its notice.

    Recoverable clinic errors (transport failures, stale sessions, a missing
    snapshot) are logged as warnings; anything else as an error with its
    traceback.

    Args:
        error: The exception being handled
        operation: What was being attempted, for the log line
        show: Also render the notice in the page
    """
    if isinstance(error, ClinicError):
        level = logging.WARNING if error.recoverable else logging.ERROR
        logger.log(level, f"{operation} failed: [{error.code}] {error.message}", extra={"details": error.details})
    else:
        logger.error(f"{operation} failed: {error}", exc_info=error)

    notice = notice_for(error)
    if show:
        show_notice(notice)
    return notice


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
):
    """
    Decorator that keeps a failure in this layer from crashing the page.

    Usage:
        @error_boundary(error_message="Part of the workspace could not be shown.")
        def render_workspace():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                notice = report_error(e, func.__name__)
                if error_message:
                    notice = Notice("warning", error_message)
                show_notice(notice)
                return default_return

        return wrapper

    return decorator
