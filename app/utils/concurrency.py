"""
Concurrency utilities.

Provides a `synchronized` decorator that acquires an instance `_lock` if present,
and `wait_for_condition`, the deadline-or-condition wait used while a watering
job holds the actuators open.
"""

from __future__ import annotations

import threading
import time
from functools import wraps
from typing import Callable, Optional, Protocol


def synchronized(func: Callable) -> Callable:
    """Decorator that acquires `self._lock` if present on the instance.

    If no `_lock` attribute exists on `self`, the function is executed
    without locking.
    """

    @wraps(func)
    def _wrapped(*args, **kwargs):
        self = args[0] if args else None
        lock = getattr(self, "_lock", None)
        if lock is None:
            return func(*args, **kwargs)
        with lock:
            return func(*args, **kwargs)

    return _wrapped


class Waitable(Protocol):
    """Anything with ``threading.Event`` wait semantics."""

    def wait(self, timeout: Optional[float] = None) -> bool: ...

    def is_set(self) -> bool: ...


def wait_for_condition(
    condition: Optional[Callable[[], bool]],
    *,
    timeout: float,
    interval: float,
    cancel: Optional[Waitable] = None,
    clock: Callable[[], float] = time.monotonic,
    on_tick: Optional[Callable[[float], None]] = None,
) -> bool:
    """
    Block until ``condition()`` is true or ``timeout`` seconds have elapsed.

    ``condition`` is evaluated every ``interval`` seconds (``None`` means a
    plain timed wait). ``on_tick`` receives the elapsed seconds after each
    tick that did not end the wait. Setting ``cancel`` ends the wait early.

    Returns:
        True if the condition was met (or the wait was cancelled) before the
        deadline, False if the deadline expired.

    Exceptions raised by ``condition`` propagate to the caller.
    """
    cancel = cancel if cancel is not None else threading.Event()
    start = clock()
    deadline = start + max(0.0, float(timeout))
    interval = max(0.01, float(interval))

    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        if cancel.wait(min(interval, remaining)) or cancel.is_set():
            return True
        if clock() >= deadline:
            return False
        if condition is not None and condition():
            return True
        if on_tick is not None:
            on_tick(clock() - start)
