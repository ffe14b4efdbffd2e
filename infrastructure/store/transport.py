"""
Store transport contract.

A transport is one way of talking to the realtime document tree. The
:class:`~infrastructure.store.state_client.StateClient` combines a primary
and a fallback transport behind one interface.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

ListenerCallback = Callable[[str, Any], None]


@runtime_checkable
class StoreTransport(Protocol):
    """Blocking, timeout-bounded access to the document tree.

    Every method raises :class:`~app.domain.exceptions.TransportError`
    (or its timeout subclass) on failure; none of them retry.
    """

    name: str

    def read(self, path: str) -> Any: ...

    def update(self, path: str, partial: Dict[str, Any]) -> None: ...

    def set(self, path: str, value: Any) -> None: ...

    def delete(self, path: str) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class ListenableTransport(StoreTransport, Protocol):
    def listen(self, path: str, callback: ListenerCallback) -> Optional[Any]: ...


def normalize_path(path: str) -> str:
    """``"/kontrol_1/"`` -> ``"kontrol_1"``; rejects empty paths."""
    cleaned = "/".join(part for part in str(path).split("/") if part)
    if not cleaned:
        raise ValueError("store path must not be empty")
    return cleaned
