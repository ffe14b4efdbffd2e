"""
State Client
============

Single entry point to the shared document store. Each call goes to the
primary transport (realtime SDK) and falls back to the secondary (REST) on
failure. A :class:`TransportPolicy` remembers repeated primary failures and
routes calls straight to the fallback for a while, so a wedged SDK
connection does not cost a full timeout on every call.

States::

    PRIMARY_PREFERRED --(N consecutive primary failures)--> FALLBACK_FORCED
    FALLBACK_FORCED   --(M fallback calls)----------------> PRIMARY_PREFERRED
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from app.constants import StorePaths, TransportPolicyDefaults
from app.domain.exceptions import StoreUnavailableError, TransportError
from app.enums import TransportMode
from app.utils.concurrency import synchronized
from infrastructure.store.transport import ListenerCallback, StoreTransport

logger = logging.getLogger(__name__)


class TransportPolicy:
    """Adaptive primary/fallback routing state machine."""

    def __init__(
        self,
        *,
        failure_threshold: int = TransportPolicyDefaults.FAILURE_THRESHOLD,
        reset_after: int = TransportPolicyDefaults.RESET_AFTER_CALLS,
    ) -> None:
        if failure_threshold < 1 or reset_after < 1:
            raise ValueError("failure_threshold and reset_after must be positive")
        self.failure_threshold = failure_threshold
        self.reset_after = reset_after
        self._lock = threading.RLock()
        self._mode = TransportMode.PRIMARY_PREFERRED
        self._failure_streak = 0
        self._forced_calls = 0

    @property
    def mode(self) -> TransportMode:
        return self._mode

    @synchronized
    def should_try_primary(self) -> bool:
        return self._mode is TransportMode.PRIMARY_PREFERRED

    @synchronized
    def record_primary_success(self) -> None:
        self._failure_streak = 0
        self._forced_calls = 0

    @synchronized
    def record_primary_failure(self) -> None:
        self._failure_streak += 1
        if self._mode is TransportMode.PRIMARY_PREFERRED and self._failure_streak >= self.failure_threshold:
            self._mode = TransportMode.FALLBACK_FORCED
            self._forced_calls = 0
            logger.warning(
                "Primary transport failed %d times in a row; using fallback only for the next %d calls",
                self._failure_streak,
                self.reset_after,
            )

    @synchronized
    def record_forced_call(self) -> None:
        if self._mode is not TransportMode.FALLBACK_FORCED:
            return
        self._forced_calls += 1
        if self._forced_calls >= self.reset_after:
            self._mode = TransportMode.PRIMARY_PREFERRED
            self._failure_streak = 0
            self._forced_calls = 0
            logger.info("Retrying primary transport after %d fallback-only calls", self.reset_after)

    @synchronized
    def snapshot(self) -> Dict[str, Any]:
        return {
            "mode": self._mode.value,
            "failure_streak": self._failure_streak,
            "forced_calls": self._forced_calls,
        }


class StateClient:
    """Timeout-bounded read/update/set/delete with primary→fallback routing."""

    def __init__(
        self,
        primary: Optional[StoreTransport],
        fallback: StoreTransport,
        *,
        policy: Optional[TransportPolicy] = None,
        ping_path: str = StorePaths.CONTROL,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self.policy = policy or TransportPolicy()
        self.ping_path = ping_path
        self._lock = threading.Lock()
        self._stats = {"primary_successes": 0, "fallback_successes": 0, "failures": 0}
        self._listeners: List[Any] = []
        self._closed = False

    # ------------------------------------------------------------------ core

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def _execute(self, operation: str, path: str, call: Callable[[StoreTransport], Any]) -> Any:
        primary_error: Optional[TransportError] = None

        if self._primary is not None and self.policy.should_try_primary():
            try:
                result = call(self._primary)
            except TransportError as exc:
                primary_error = exc
                self.policy.record_primary_failure()
                logger.warning("%s %s via %s failed (%s); trying %s", operation, path,
                               self._primary.name, exc, self._fallback.name)
            else:
                self.policy.record_primary_success()
                self._bump("primary_successes")
                return result
        else:
            self.policy.record_forced_call()

        try:
            result = call(self._fallback)
        except TransportError as exc:
            self._bump("failures")
            logger.error("%s %s failed on every transport: %s", operation, path, exc)
            raise StoreUnavailableError(
                f"Store {operation} {path} failed on every transport",
                detail={
                    "path": path,
                    "operation": operation,
                    "primary_error": str(primary_error) if primary_error else None,
                    "fallback_error": str(exc),
                },
            ) from exc
        self._bump("fallback_successes")
        return result

    # ------------------------------------------------------------------ API

    def read(self, path: str) -> Any:
        """Value at ``path`` or ``None`` when the node does not exist."""
        return self._execute("read", path, lambda t: t.read(path))

    def update(self, path: str, partial: Dict[str, Any]) -> bool:
        """Merge ``partial`` into ``path`` (multi-key writes land together)."""
        self._execute("update", path, lambda t: t.update(path, partial))
        return True

    def set(self, path: str, value: Any) -> bool:
        self._execute("set", path, lambda t: t.set(path, value))
        return True

    def delete(self, path: str) -> bool:
        self._execute("delete", path, lambda t: t.delete(path))
        return True

    def subscribe(self, path: str, callback: ListenerCallback) -> Optional[Any]:
        """Best-effort push notifications from the primary transport.

        Returns the listener handle, or ``None`` if push is unavailable;
        callers keep polling either way.
        """
        listen = getattr(self._primary, "listen", None)
        if listen is None:
            logger.info("Primary transport has no push support; %s will be polled only", path)
            return None
        try:
            handle = listen(path, callback)
        except TransportError as exc:
            logger.warning("Could not subscribe to %s: %s (polling continues)", path, exc)
            return None
        if handle is not None:
            with self._lock:
                self._listeners.append(handle)
        return handle

    def ping(self) -> bool:
        try:
            self.read(self.ping_path)
            return True
        except StoreUnavailableError:
            return False

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = dict(self._stats)
        data.update(self.policy.snapshot())
        data["listeners"] = len(self._listeners)
        return data

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            listeners, self._listeners = self._listeners, []
        for handle in listeners:
            try:
                handle.close()
            except Exception as exc:
                logger.warning("Error closing store listener: %s", exc)
        for transport in (self._primary, self._fallback):
            if transport is None:
                continue
            try:
                transport.close()
            except Exception as exc:
                logger.warning("Error closing %s transport: %s", transport.name, exc)
