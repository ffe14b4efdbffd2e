"""
Trigger State
=============
In-memory bookkeeping that keeps evaluators from firing the same trigger
twice: the per-day ledger of fired job ids and per-pot cooldown stamps.

Both are owned by a single evaluator/executor pair and injected through
constructors; nothing here is module-level state.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Iterable, Optional

from app.utils.concurrency import synchronized


class TriggerLedger:
    """Job ids fired for the current local day."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._fired: Dict[str, str] = {}  # job_id -> date_key

    @synchronized
    def contains(self, job_id: str) -> bool:
        return job_id in self._fired

    @synchronized
    def mark(self, job_id: str, date_key: str) -> None:
        self._fired[job_id] = date_key

    @synchronized
    def purge_except(self, date_key: str) -> int:
        """Drop every entry not fired on ``date_key``; returns how many were removed."""
        stale = [job_id for job_id, day in self._fired.items() if day != date_key]
        for job_id in stale:
            del self._fired[job_id]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fired)


class CooldownTracker:
    """
    Last watering-start time per pot.

    Shared between the threshold evaluator (stamps at enqueue) and the
    executor (stamps again when a job finishes), which run on different
    threads.
    """

    def __init__(self, cooldown_seconds: float, *, clock: Optional[Callable[[], float]] = None) -> None:
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock or time.monotonic
        self._lock = threading.RLock()
        self._stamps: Dict[int, float] = {}

    @synchronized
    def stamp(self, pots: Iterable[int], at: Optional[float] = None) -> None:
        moment = self._clock() if at is None else at
        for pot in pots:
            self._stamps[int(pot)] = moment

    @synchronized
    def remaining(self, pot: int) -> float:
        """Seconds until ``pot`` may be watered again (0 when it may)."""
        last = self._stamps.get(int(pot))
        if last is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - last))

    def is_cooling(self, pot: int) -> bool:
        return self.remaining(pot) > 0

    @synchronized
    def last_stamp(self, pot: int) -> Optional[float]:
        return self._stamps.get(int(pot))
