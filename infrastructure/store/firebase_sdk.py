"""
Firebase Admin SDK transport (primary).

The SDK's realtime database calls block without a deadline, so each call
runs on a small thread pool and is abandoned after ``timeout`` seconds.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional

import firebase_admin
from firebase_admin import credentials, db

from app.constants import Timeouts
from app.domain.exceptions import TransportError, TransportTimeoutError
from infrastructure.store.transport import ListenerCallback, normalize_path

logger = logging.getLogger(__name__)


def initialize_firebase_app(
    service_account: Dict[str, Any],
    database_url: str,
    *,
    name: Optional[str] = None,
) -> firebase_admin.App:
    """Create a dedicated Firebase app for this worker.

    A named app keeps tests and the CLI from colliding with the SDK's
    process-wide default app.
    """
    cred = credentials.Certificate(service_account)
    app_name = name or f"irrigation-worker-{uuid.uuid4().hex[:8]}"
    app = firebase_admin.initialize_app(cred, {"databaseURL": database_url}, name=app_name)
    logger.info("Firebase app '%s' initialized for %s", app_name, database_url)
    return app


class FirebaseSdkTransport:
    """Realtime database access through ``firebase_admin.db`` references."""

    name = "sdk"

    def __init__(
        self,
        app: firebase_admin.App,
        *,
        timeout: float = Timeouts.PRIMARY_TRANSPORT,
        max_workers: int = 4,
        reference_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._app = app
        self.timeout = float(timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="firebase-sdk")
        self._reference = reference_factory or (lambda path: db.reference(path, app=self._app))
        self._closed = False

    def _call(self, operation: str, path: str, fn: Callable[[Any], Any]) -> Any:
        if self._closed:
            raise TransportError("SDK transport is closed", transport=self.name)
        ref_path = normalize_path(path)
        future = self._executor.submit(lambda: fn(self._reference(ref_path)))
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TransportTimeoutError(
                f"SDK {operation} {ref_path} timed out after {self.timeout:.0f}s",
                transport=self.name,
                detail={"path": ref_path, "operation": operation},
            ) from None
        except TransportError:
            raise
        except Exception as exc:
            # firebase_admin surfaces FirebaseError, ValueError and transport-level
            # google.auth errors; all of them mean "this transport failed".
            raise TransportError(
                f"SDK {operation} {ref_path} failed: {exc}",
                transport=self.name,
                detail={"path": ref_path, "operation": operation},
            ) from exc

    def read(self, path: str) -> Any:
        return self._call("read", path, lambda ref: ref.get())

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        self._call("update", path, lambda ref: ref.update(dict(partial)))

    def set(self, path: str, value: Any) -> None:
        self._call("set", path, lambda ref: ref.set(value))

    def delete(self, path: str) -> None:
        self._call("delete", path, lambda ref: ref.delete())

    def listen(self, path: str, callback: ListenerCallback) -> Optional[Any]:
        """Start a streaming listener; returns the SDK registration (has ``close()``)."""
        ref_path = normalize_path(path)

        def _on_event(event) -> None:
            try:
                callback(event.event_type, event.data)
            except Exception as exc:
                logger.error("Listener callback for %s failed: %s", ref_path, exc, exc_info=True)

        try:
            registration = self._reference(ref_path).listen(_on_event)
        except Exception as exc:
            raise TransportError(
                f"SDK listen {ref_path} failed: {exc}",
                transport=self.name,
                detail={"path": ref_path, "operation": "listen"},
            ) from exc
        logger.info("Realtime listener attached to %s", ref_path)
        return registration

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        try:
            firebase_admin.delete_app(self._app)
        except ValueError:
            logger.debug("Firebase app already deleted")
