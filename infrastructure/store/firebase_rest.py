"""
Firebase REST transport (fallback).

Talks to ``<databaseURL>/<path>.json`` with plain HTTP so it keeps working
when the SDK's streaming connection is wedged.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import timezone
from typing import Any, Callable, Dict, Optional

import requests
from firebase_admin import credentials

from app.constants import Timeouts
from app.domain.exceptions import TransportError, TransportTimeoutError
from infrastructure.store.transport import normalize_path

logger = logging.getLogger(__name__)


class ServiceAccountTokenProvider:
    """OAuth2 access tokens for the database REST API.

    Tokens are cached until shortly before they expire.
    """

    REFRESH_MARGIN_SECONDS = 60

    def __init__(self, credential: credentials.Certificate, *, clock: Callable[[], float] = time.time) -> None:
        self._credential = credential
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @classmethod
    def from_service_account(cls, service_account: Dict[str, Any]) -> "ServiceAccountTokenProvider":
        return cls(credentials.Certificate(service_account))

    def __call__(self) -> str:
        with self._lock:
            if self._token and self._clock() < self._expires_at - self.REFRESH_MARGIN_SECONDS:
                return self._token
            info = self._credential.get_access_token()
            self._token = info.access_token
            expiry = getattr(info, "expiry", None)
            if expiry is None:
                self._expires_at = self._clock() + 3000
            else:
                # google-auth reports naive UTC expiries
                if expiry.tzinfo is None:
                    expiry = expiry.replace(tzinfo=timezone.utc)
                self._expires_at = expiry.timestamp()
            return self._token


class FirebaseRestTransport:
    """Realtime database access over HTTPS with ``requests``."""

    name = "rest"

    def __init__(
        self,
        database_url: str,
        *,
        token_provider: Optional[Callable[[], str]] = None,
        timeout: float = Timeouts.FALLBACK_TRANSPORT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.database_url = database_url.rstrip("/")
        self.timeout = float(timeout)
        self._token_provider = token_provider
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{normalize_path(path)}.json"

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = self._url(path)
        params = {}
        try:
            if self._token_provider is not None:
                params["access_token"] = self._token_provider()
        except Exception as exc:
            raise TransportError(
                f"REST token refresh failed: {exc}", transport=self.name, detail={"path": path}
            ) from exc

        kwargs: Dict[str, Any] = {"params": params, "timeout": self.timeout}
        if payload is not None or method in ("PUT", "PATCH"):
            kwargs["json"] = payload

        try:
            response = self._session.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise TransportTimeoutError(
                f"REST {method} {path} timed out after {self.timeout:.0f}s",
                transport=self.name,
                detail={"path": path, "method": method},
            ) from None
        except requests.exceptions.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            raise TransportError(
                f"REST {method} {path} failed: {exc}",
                transport=self.name,
                detail={"path": path, "method": method, "status": status},
            ) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"REST {method} {path} returned invalid JSON", transport=self.name, detail={"path": path}
            ) from exc

    def read(self, path: str) -> Any:
        return self._request("GET", path)

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        self._request("PATCH", path, dict(partial))

    def set(self, path: str, value: Any) -> None:
        self._request("PUT", path, value)

    def delete(self, path: str) -> None:
        self._request("DELETE", path)

    def close(self) -> None:
        self._session.close()
