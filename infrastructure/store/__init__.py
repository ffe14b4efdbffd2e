"""Access to the shared realtime document store (SDK primary, REST fallback)."""

from infrastructure.store.state_client import StateClient, TransportPolicy
from infrastructure.store.transport import StoreTransport, normalize_path

__all__ = [
    "StateClient",
    "StoreTransport",
    "TransportPolicy",
    "normalize_path",
]
