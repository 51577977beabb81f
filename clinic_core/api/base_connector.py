"""
Base API Connector Class
Shared requests.Session handling and error classification for backend calls
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from clinic_core.errors.exceptions import AuthenticationError, RemoteUnavailableError
from clinic_core.logging import get_logger

logger = get_logger(__name__)

# Explicit answers from the backend. Anything else is a transport problem.
REJECTION_STATUSES = frozenset({400, 401, 403, 429})


@dataclass
class APIConfig:
    """Configuration for API connection"""
    api_name: str
    base_url: str
    api_key: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    timeout: float = 10.0


class BaseAPIConnector(ABC):
    """Abstract base class for backend connectors"""

    def __init__(self, config: APIConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

        if config.headers:
            self.session.headers.update(config.headers)

        if config.api_key:
            self._set_auth_header()

    @abstractmethod
    def _set_auth_header(self):
        """Set authentication header based on API requirements"""
        pass

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST JSON and return the decoded body.

        Raises:
            AuthenticationError: backend answered with an explicit rejection
            RemoteUnavailableError: no usable answer (network, timeout, 5xx, bad body)
        """
        url = self._url(path)
        try:
            response = self.session.post(url, json=payload, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise RemoteUnavailableError(
                f"{self.config.api_name} unreachable: {e.__class__.__name__}",
                endpoint=path,
            ) from e

        body = self._decode(response)

        if response.status_code in REJECTION_STATUSES:
            raise AuthenticationError(
                body.get("error") or "Request rejected",
                status_code=response.status_code,
            )

        if response.status_code >= 300 or not body:
            raise RemoteUnavailableError(
                f"{self.config.api_name} returned HTTP {response.status_code}",
                endpoint=path,
                status_code=response.status_code,
            )

        return body

    @staticmethod
    def _decode(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
