"""
Page gating for the feature pages.

Each page id maps to the capability it needs. Unknown page ids are denied.
Page-level checks (require_page_access) are the access control; the sidebar
only hides what the user cannot open.
"""

from types import MappingProxyType
from typing import List

import streamlit as st

# page id -> required capability
PAGE_PERMISSIONS = MappingProxyType({
    "dash": "viewDashboard",
    "rev": "editRevenue",
    "exp": "editExpenses",
    "scan": "viewReceiptScanner",
    "arap": "editARAP",
    "patient": "viewPatients",
    "booking": "viewBookings",
    "emr": "viewEMR",
    "package": "viewPackages",
    "pay": "viewPayroll",
    "doc": "viewDoctorAnalytics",
    "report": "viewReports",
    "settings": "viewSettings",
})


def can_open_page(session_manager, page_id: str) -> bool:
    capability = PAGE_PERMISSIONS.get(page_id)
    if capability is None:
        return False
    return session_manager.has_capability(capability)


def visible_pages(session_manager) -> List[str]:
    """Page ids the current user may open, in menu order."""
    return [page_id for page_id in PAGE_PERMISSIONS if can_open_page(session_manager, page_id)]


def require_page_access(session_manager, page_id: str) -> None:
    """
    Stop rendering the page if the current user may not open it.
    Call this at the start of every feature page.
    """
    if session_manager.get_current_session() is None:
        st.warning("Please log in to continue.")
        st.stop()
    if not can_open_page(session_manager, page_id):
        st.error("You do not have access to this page.")
        st.stop()
