"""
Remote endpoint connectors used by the session layer.
"""

from .base_connector import APIConfig, BaseAPIConnector
from .auth_connector import AuthAPIConnector, LoginResponse

__all__ = ["APIConfig", "BaseAPIConnector", "AuthAPIConnector", "LoginResponse"]
