"""
Service protocols (structural typing interfaces).

Protocols let consumer services declare the *minimal* surface they depend on
without importing the concrete class, breaking circular imports and making
tests trivially mockable.

Usage
-----
In a consumer service::

    from __future__ import annotations
    from typing import TYPE_CHECKING
    if TYPE_CHECKING:
        from app.services.protocols import StateStore

    class ScheduleEvaluator:
        def __init__(self, store: "StateStore", ...): ...

At runtime the concrete ``StateClient`` already satisfies the protocol
via structural subtyping; no explicit inheritance needed.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from app.domain.watering_job import WateringJob


@runtime_checkable
class StateStore(Protocol):
    """Read/write access to the shared document tree."""

    def read(self, path: str) -> Any:
        """Return the value at ``path``, or ``None`` when it does not exist."""
        ...

    def update(self, path: str, partial: Dict[str, Any]) -> bool:
        """Merge ``partial`` into the document at ``path``."""
        ...

    def set(self, path: str, value: Any) -> bool:
        """Replace the document at ``path``."""
        ...

    def delete(self, path: str) -> bool:
        ...


@runtime_checkable
class SubscribableStore(StateStore, Protocol):
    def subscribe(self, path: str, callback: Callable[[str, Any], None]) -> Optional[Any]:
        """Register a push listener; returns a handle with ``close()`` or ``None``."""
        ...


@runtime_checkable
class JobSink(Protocol):
    """Anything that accepts watering jobs (the durable queue in production)."""

    def enqueue(self, job: WateringJob) -> bool:
        """Queue ``job``; False when a job with the same id already exists."""
        ...


@runtime_checkable
class HistorySink(Protocol):
    def record_watering(
        self,
        job: WateringJob,
        elapsed_seconds: float,
        *,
        duration_seconds: Optional[int] = None,
        stopped_early: bool = False,
    ) -> bool:
        ...
