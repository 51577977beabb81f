from __future__ import annotations
import streamlit as st

from clinic_core.auth.navigation import visible_pages
from clinic_core.errors import error_boundary, show_notice
from clinic_core.logging import setup_logging
from clinic_core.services import get_session_service

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Clinic - Login",
    page_icon="🏥",
    layout="wide",
    initial_sidebar_state="collapsed",  # Hide sidebar until login
)

setup_logging()
service = get_session_service()
session = service.get_current_session()


# ============================================================================
# LOGIN
# ============================================================================
def render_login() -> None:
    st.title("Clinic Login")
    show_notice(service.pop_notice())
    with st.form("login_form"):
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Log in")

    if submitted:
        result = service.login(username, password)
        if not result:
            show_notice(result.notice)
            return
        st.session_state["login_notices"] = result.metadata["notices"]
        st.rerun()

    with st.expander("Forgot password?"):
        reset_user = st.text_input("Username or email", key="reset_user")
        if st.button("Send reset link"):
            field = "email" if "@" in reset_user else "username"
            result = service.request_password_reset(**{field: reset_user})
            if result:
                st.success("If the account exists, a reset link has been sent.")
            else:
                show_notice(result.notice)


# ============================================================================
# WORKSPACE
# ============================================================================
@error_boundary(error_message="Part of the workspace could not be shown.")
def render_workspace() -> None:
    service.touch_activity()
    service.refresh_token_if_needed()
    for notice in st.session_state.pop("login_notices", []):
        show_notice(notice)
    tenant = service.tenant_config()

    with st.sidebar:
        st.markdown(f"### {tenant.name}")
        st.caption(f"{session.display_name} ({session.role})")
        if session.status.value == "active_offline":
            st.caption("Offline mode")

        stores = sorted(session.assigned_stores) or list(tenant.stores)
        if service.has_capability("viewAllStores"):
            stores = list(tenant.stores) or stores
        choice = st.selectbox("Store", ["All"] + stores)
        service.set_active_store(None if choice == "All" else choice)

        sync = service.sync_state
        if sync is not None:
            st.caption(f"Sync: {sync.status.value} ({service.pending_writes()} pending)")

        if st.button("Log out"):
            service.logout()
            st.rerun()

    if service.idle_warning_due():
        st.warning("You will be logged out soon due to inactivity.")

    view = service.scoped_view()
    tables = [t for t in service.store.tables() if view.get(t)]
    st.title("Workspace")
    st.caption("Pages: " + ", ".join(visible_pages(service.session_manager)))
    if not tables:
        st.info("No records visible for your role.")
        return

    table = st.selectbox("Collection", tables)
    st.dataframe(view.to_frame(table), use_container_width=True)


if session is None:
    render_login()
else:
    render_workspace()
