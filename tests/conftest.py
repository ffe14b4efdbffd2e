"""
Shared test fixtures for the irrigation worker test suite.

Provides:
- FakeTransport: in-memory document tree speaking the transport contract
- FakeClock: monotonic clock whose ``wait`` advances time instead of sleeping
- StateClient wired to two fake transports sharing one tree
- JobQueueRepository on a SQLite file under tmp_path

Usage:
    def test_example(store, tree, queue_repo):
        tree["kontrol_1"] = {"waktu": True}
        ...
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from app.domain.exceptions import TransportError
from infrastructure.database.repositories.job_queue import JobQueueRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.store.state_client import StateClient, TransportPolicy
from infrastructure.store.transport import normalize_path

# ---------------------------------------------------------------------------
# Logging: keep test output quiet
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

SITE_TZ = "Asia/Jakarta"  # UTC+7, no DST


def utc(year, month, day, hour=0, minute=0, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


# ========================== Fakes ==========================================


class FakeListener:
    def __init__(self, transport: "FakeTransport", path: str, callback):
        self.transport = transport
        self.path = path
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """In-memory document tree with failure injection.

    Several transports may share one ``tree`` dict to model two routes to
    the same database.
    """

    def __init__(self, name: str, tree: dict | None = None, *, listenable: bool = True):
        self.name = name
        self.tree = tree if tree is not None else {}
        self.failing = False
        self.calls: list[tuple[str, str, Any]] = []
        self.listeners: list[FakeListener] = []
        if not listenable:
            self.listen = None

    def _check(self, operation: str, path: str, payload: Any = None) -> list[str]:
        self.calls.append((operation, path, copy.deepcopy(payload)))
        if self.failing:
            raise TransportError(f"{self.name} {operation} {path} failed", transport=self.name)
        return normalize_path(path).split("/")

    def _parent(self, parts: list[str], create: bool) -> dict | None:
        node = self.tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if not create:
                    return None
                child = node[part] = {}
            node = child
        return node

    def read(self, path: str) -> Any:
        parts = self._check("read", path)
        parent = self._parent(parts, create=False)
        if parent is None:
            return None
        return copy.deepcopy(parent.get(parts[-1]))

    def update(self, path: str, partial: dict) -> None:
        parts = self._check("update", path, partial)
        parent = self._parent(parts, create=True)
        node = parent.get(parts[-1])
        if not isinstance(node, dict):
            node = parent[parts[-1]] = {}
        node.update(copy.deepcopy(partial))

    def set(self, path: str, value: Any) -> None:
        parts = self._check("set", path, value)
        parent = self._parent(parts, create=True)
        parent[parts[-1]] = copy.deepcopy(value)

    def delete(self, path: str) -> None:
        parts = self._check("delete", path)
        parent = self._parent(parts, create=False)
        if parent is not None:
            parent.pop(parts[-1], None)

    def listen(self, path: str, callback):
        if self.failing:
            raise TransportError(f"{self.name} listen {path} failed", transport=self.name)
        listener = FakeListener(self, path, callback)
        self.listeners.append(listener)
        return listener

    def push(self, event_type: str = "put", data: Any = None) -> None:
        for listener in list(self.listeners):
            if not listener.closed:
                listener.callback(event_type, data)

    def close(self) -> None:
        self.calls.append(("close", "", None))

    def writes(self, path: str) -> list[tuple[str, Any]]:
        """``(operation, payload)`` of every update/set made to ``path``."""
        return [(op, payload) for op, p, payload in self.calls if op in ("update", "set") and p == path]


class FakeClock:
    """Deterministic monotonic clock.

    Also quacks like ``threading.Event`` so it can stand in for the
    executor's abort event: ``wait`` advances time instead of blocking.
    Callbacks registered with ``at`` fire once time reaches them.
    """

    def __init__(self, start: float = 1000.0):
        self.now = float(start)
        self._flag = False
        self._pending: list[tuple[float, Callable[[], None]]] = []
        self.waits: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [item for item in self._pending if item[0] <= self.now]
        self._pending = [item for item in self._pending if item[0] > self.now]
        for _, fn in sorted(due, key=lambda item: item[0]):
            fn()

    def at(self, offset: float, fn: Callable[[], None]) -> None:
        """Run ``fn`` once ``offset`` seconds from the current time have passed."""
        self._pending.append((self.now + offset, fn))

    # threading.Event surface
    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        if not self._flag and timeout:
            self.advance(timeout)
        return self._flag

    def is_set(self) -> bool:
        return self._flag

    def set(self) -> None:
        self._flag = True


# ========================== Store Fixtures =================================


@pytest.fixture()
def tree() -> dict:
    """The shared document tree both fake transports read and write."""
    return {}


@pytest.fixture()
def primary(tree) -> FakeTransport:
    return FakeTransport("sdk", tree)


@pytest.fixture()
def fallback(tree) -> FakeTransport:
    return FakeTransport("rest", tree, listenable=False)


@pytest.fixture()
def store(primary, fallback) -> StateClient:
    return StateClient(primary, fallback, policy=TransportPolicy(failure_threshold=3, reset_after=50))


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


# ========================== Queue Fixtures =================================


@pytest.fixture()
def db_handler(tmp_path):
    """File-backed SQLite queue database (thread-local connections share it)."""
    handler = SQLiteDatabaseHandler(str(tmp_path / "queue" / "watering_queue.db"))
    handler.create_tables()
    yield handler
    handler.close_all()


@pytest.fixture()
def queue_repo(db_handler) -> JobQueueRepository:
    return JobQueueRepository(db_handler, keep_completed=100, keep_failed=50)
