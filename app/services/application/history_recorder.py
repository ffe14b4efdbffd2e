"""
History Recorder
================

Writes watering runs and periodic sensor snapshots to
``history/<YYYY-MM-DD>/<HH:MM>`` in the shared store and prunes dates that
fall out of the retention window.

History is best-effort: a failed write is logged and never fails the
watering job that produced it. Keys have minute resolution, so two records
in the same local minute share a key and the later one wins.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from app.constants import HistoryDefaults, StorePaths
from app.domain.exceptions import StoreUnavailableError
from app.domain.watering_job import WateringJob
from app.utils.time import epoch_millis, local_date_key, local_time_key, parse_date_key, retention_cutoff, utc_now

if TYPE_CHECKING:
    from app.services.protocols import StateStore

logger = logging.getLogger(__name__)


class HistoryRecorder:
    """Watering and sensor history in the shared document store."""

    def __init__(
        self,
        store: "StateStore",
        *,
        sensor_path: str = StorePaths.SENSOR,
        history_path: str = StorePaths.HISTORY,
        timezone: str = "Asia/Jakarta",
        retention_days: int = HistoryDefaults.RETENTION_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._sensor_path = sensor_path
        self._history_path = history_path.strip("/")
        self._timezone = timezone
        self.retention_days = retention_days
        self._clock = clock

    def _key_for(self, now: datetime) -> str:
        return f"{self._history_path}/{local_date_key(now, self._timezone)}/{local_time_key(now, self._timezone)}"

    def _sensor_snapshot(self) -> Dict[str, Any]:
        try:
            data = self._store.read(self._sensor_path)
        except StoreUnavailableError as exc:
            logger.warning("History: sensor snapshot unavailable (%s)", exc)
            return {}
        return dict(data) if isinstance(data, Mapping) else {}

    def _write(self, key: str, record: Dict[str, Any]) -> bool:
        try:
            self._store.set(key, record)
        except StoreUnavailableError as exc:
            logger.error("Failed to write history %s: %s", key, exc)
            return False
        logger.info("History logged: %s (%s)", key, record.get("type"))
        return True

    def record_watering(
        self,
        job: WateringJob,
        elapsed_seconds: float,
        *,
        duration_seconds: Optional[int] = None,
        stopped_early: bool = False,
    ) -> bool:
        """Record a finished watering run; returns False if the write failed.

        ``duration_seconds`` is the duration actually applied when the
        executor capped the job's configured one.
        """
        now = self._clock()
        record: Dict[str, Any] = self._sensor_snapshot()
        record.update(
            {
                "timestamp": epoch_millis(now),
                "type": job.history_type,
                "pots": list(job.pots),
                "duration": job.duration_seconds if duration_seconds is None else int(duration_seconds),
                "actual_duration": int(round(elapsed_seconds)),
                "stopped_early": bool(stopped_early),
                "job_id": job.job_id,
            }
        )
        return self._write(self._key_for(now), record)

    def record_snapshot(self) -> bool:
        """Periodic ``auto_log`` snapshot of the sensor document."""
        now = self._clock()
        snapshot = self._sensor_snapshot()
        if not snapshot:
            logger.debug("History auto-log skipped: no sensor data")
            return False
        snapshot.update({"timestamp": epoch_millis(now), "type": HistoryDefaults.AUTO_LOG_TYPE})
        return self._write(self._key_for(now), snapshot)

    def prune(self, retention_days: Optional[int] = None) -> int:
        """Delete history dates older than the retention window.

        Returns:
            Number of date nodes deleted.
        """
        days = self.retention_days if retention_days is None else retention_days
        cutoff = retention_cutoff(self._clock(), self._timezone, days)

        try:
            history = self._store.read(self._history_path)
        except StoreUnavailableError as exc:
            logger.error("History cleanup skipped: %s", exc)
            return 0
        if not isinstance(history, Mapping):
            return 0

        deleted = 0
        for date_key in sorted(history):
            day = parse_date_key(str(date_key))
            if day is None:
                logger.debug("History cleanup: ignoring non-date key %s", date_key)
                continue
            if day >= cutoff:
                continue
            try:
                self._store.delete(f"{self._history_path}/{date_key}")
            except StoreUnavailableError as exc:
                logger.error("History cleanup: failed to delete %s: %s", date_key, exc)
                continue
            deleted += 1
            logger.info("History cleanup: deleted %s", date_key)

        logger.info("History cleanup completed: %d date(s) older than %s removed", deleted, cutoff.isoformat())
        return deleted
