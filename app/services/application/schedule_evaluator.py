"""
Schedule Evaluator
==================

Turns time-of-day schedules in the control document into watering jobs.

Every poll reads the control document and walks each local minute since
the previous check (poll drift can jump a minute), enqueueing one job per
matching schedule source. Job ids are deterministic per (source, date,
minute), so a schedule fires at most once per day even when a minute is
seen by several polls; the in-memory :class:`TriggerLedger` avoids even asking the queue.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.constants import Intervals, StorePaths, WateringDefaults
from app.domain.exceptions import RepositoryError, StoreUnavailableError
from app.domain.schedules import ScheduleSource, collect_schedule_sources
from app.domain.trigger_state import TriggerLedger
from app.schemas.control import ControlFlags
from app.utils.concurrency import synchronized
from app.utils.time import local_date_key, local_time_key, utc_now

if TYPE_CHECKING:
    from app.services.protocols import JobSink, StateStore

logger = logging.getLogger(__name__)


class ScheduleEvaluator:
    """Polls the control document for schedules due since the previous check."""

    def __init__(
        self,
        store: "StateStore",
        queue: "JobSink",
        *,
        control_path: str = StorePaths.CONTROL,
        timezone: str = "Asia/Jakarta",
        ledger: Optional[TriggerLedger] = None,
        catchup_minutes: int = Intervals.SCHEDULE_CATCHUP_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._queue = queue
        self._control_path = control_path
        self._timezone = timezone
        self.ledger = ledger or TriggerLedger()
        self._catchup_minutes = max(0, int(catchup_minutes))
        self._clock = clock
        self._lock = threading.RLock()
        self._checks = 0
        self._last_checked: Optional[datetime] = None

    def _due_minutes(self, now: datetime) -> List[datetime]:
        """Minute starts from the last successful check through ``now``, oldest first.

        The last checked minute is included again so a failed enqueue gets
        retried; the ledger and deterministic job ids absorb the repeats.
        """
        current = now.replace(second=0, microsecond=0)
        start = current
        if self._last_checked is not None:
            earliest = current - timedelta(minutes=self._catchup_minutes)
            start = min(current, max(earliest, self._last_checked.replace(second=0, microsecond=0)))
        minutes = []
        while start <= current:
            minutes.append(start)
            start += timedelta(minutes=1)
        return minutes

    @synchronized
    def evaluate(self, now: Optional[datetime] = None) -> List[str]:
        """Run one schedule check.

        Every local minute since the previous successful check is matched,
        bounded by the catch-up window, so a late poll never skips a minute.

        Returns:
            Ids of the jobs newly added to the queue by this check.
        """
        self._checks += 1
        now = now or self._clock()
        date_key = local_date_key(now, self._timezone)
        time_key = local_time_key(now, self._timezone)

        purged = self.ledger.purge_except(date_key)
        if purged:
            logger.info("New day %s: cleared %d fired schedule(s) from the ledger", date_key, purged)

        try:
            control = self._store.read(self._control_path)
        except StoreUnavailableError as exc:
            logger.warning("Schedule check #%d skipped: control document unavailable (%s)", self._checks, exc)
            return []

        minutes = self._due_minutes(now)
        self._last_checked = now

        if control is None:
            logger.debug("Schedule check #%d: no control document at %s", self._checks, self._control_path)
            return []
        if not isinstance(control, Mapping):
            logger.warning("Control document at %s is not an object; ignoring", self._control_path)
            return []

        try:
            flags = ControlFlags.model_validate(dict(control))
        except PydanticValidationError as exc:
            logger.warning("Control flags unreadable: %s", exc)
            return []
        if not flags.time_mode:
            logger.debug("Schedule check #%d at %s: time mode disabled", self._checks, time_key)
            return []

        sources, invalid = collect_schedule_sources(control)
        for name, reason in invalid.items():
            logger.warning("Skipping schedule %s: %s", name, reason)

        logger.debug(
            "Schedule check #%d at %s %s: %d source(s), %d minute(s)",
            self._checks,
            date_key,
            time_key,
            len(sources),
            len(minutes),
        )

        fired: List[str] = []
        for minute in minutes:
            minute_date = local_date_key(minute, self._timezone)
            minute_time = local_time_key(minute, self._timezone)
            for source in sources:
                if source.active and source.time_of_day == minute_time:
                    job_id = self._fire(source, minute_date, minute_time, now)
                    if job_id:
                        fired.append(job_id)
        return fired

    def _fire(self, source: ScheduleSource, date_key: str, time_key: str, now: datetime) -> Optional[str]:
        pots = [
            pot for pot in source.pots
            if WateringDefaults.POT_MIN <= pot <= WateringDefaults.POT_MAX
        ]
        dropped = [pot for pot in source.pots if pot not in pots]
        if dropped:
            logger.warning("%s: ignoring unknown pot(s) %s", source.name, dropped)
        if not pots:
            logger.warning("%s: no active pots defined, skipping", source.name)
            return None

        job = replace(source.build_job(date_key, time_key), created_at=now, pots=pots)
        if self.ledger.contains(job.job_id):
            logger.debug("%s already triggered as %s", source.name, job.job_id)
            return None

        try:
            inserted = self._queue.enqueue(job)
        except RepositoryError as exc:
            # Not marked: the next check retries this minute.
            logger.error("Failed to queue %s: %s", job.job_id, exc)
            return None

        self.ledger.mark(job.job_id, date_key)
        if not inserted:
            return None
        logger.info(
            "Schedule %s triggered for %s: pots=%s duration=%ss water=%s fertilizer=%s",
            source.name,
            time_key,
            job.pots,
            job.duration_seconds,
            job.pump_water,
            job.pump_fertilizer,
        )
        return job.job_id
