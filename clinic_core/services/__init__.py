# =============================================================================
# clinic_core/services/__init__.py
# Service layer consumed by feature pages
# =============================================================================
"""
Feature pages use one object per tab:

    from clinic_core.services import get_session_service

    service = get_session_service()
    session = service.get_current_session()
    if service.has_capability("viewBookings"):
        view = service.scoped_view()
        st.dataframe(view.to_frame("bookings"))
"""

from .base_service import ServiceResult, BaseService


def get_session_service(*args, **kwargs):
    """Tab-scoped SessionService (lazy import avoids circular dependencies)."""
    from .session_service import get_session_service as _get_session_service
    return _get_session_service(*args, **kwargs)


__all__ = ["ServiceResult", "BaseService", "get_session_service"]
