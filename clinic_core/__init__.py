"""
clinic_core - session, permission and realtime-sync layer for the clinic
management app.

Feature pages should only talk to `clinic_core.services.get_session_service()`.
"""

__version__ = "0.1.0"
