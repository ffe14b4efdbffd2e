"""
Threshold Evaluator
===================

Watches soil-moisture readings and queues a watering job when a pot covered
by an active ``threshold_*`` entry falls below the entry's lower bound.

Rules per entry and pot (pots 1..5 only):

- moisture >= upper bound: never watered by this entry
- moisture < lower bound and not cooling down: needs water
- smart mode: pots between the bounds that are not cooling down ride along
  in the same job and are topped up to the upper bound too

At most one job per entry per check. Cooldown is stamped for every pot in
the job as soon as it is queued. The check runs on a timer and, when the
store supports push, on sensor updates; both paths share one lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.constants import ControlKeys, Intervals, StorePaths, WateringDefaults, soil_key
from app.domain.exceptions import RepositoryError, StoreUnavailableError, ValidationError
from app.domain.trigger_state import CooldownTracker
from app.domain.watering_job import SENSOR_THRESHOLD_TYPE, TargetBounds, WateringJob, threshold_job_id
from app.enums import JobSource
from app.schemas.control import ControlFlags, ThresholdEntry, validate_entry
from app.utils.concurrency import synchronized
from app.utils.time import epoch_millis

if TYPE_CHECKING:
    from app.services.protocols import JobSink, SubscribableStore

logger = logging.getLogger(__name__)


def read_moisture(sensors: Mapping, pot: int) -> Optional[float]:
    """Moisture percent for ``pot`` or None when missing/unparsable."""
    raw = sensors.get(soil_key(pot))
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value:  # NaN
        return None
    return value


class ThresholdEvaluator:
    """Sensor-mode trigger: moisture thresholds → watering jobs."""

    def __init__(
        self,
        store: "SubscribableStore",
        queue: "JobSink",
        cooldowns: CooldownTracker,
        *,
        control_path: str = StorePaths.CONTROL,
        sensor_path: str = StorePaths.SENSOR,
        listener_min_gap: float = Intervals.LISTENER_MIN_GAP,
        clock_ms: Callable[[], int] = epoch_millis,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._queue = queue
        self.cooldowns = cooldowns
        self._control_path = control_path
        self._sensor_path = sensor_path
        self._listener_min_gap = listener_min_gap
        self._clock_ms = clock_ms
        self._monotonic = monotonic
        self._lock = threading.RLock()
        self._last_id_ms = 0
        self._last_push_check: Optional[float] = None
        self._listener: Optional[Any] = None
        self._checks = 0

    # ── Trigger sources ──────────────────────────────────────────────

    def start_listener(self) -> bool:
        """Attach a best-effort push listener on the sensor path."""
        self._listener = self._store.subscribe(self._sensor_path, self._on_sensor_event)
        if self._listener is None:
            logger.info("Sensor push listener unavailable; relying on polling")
            return False
        logger.info("Sensor push listener attached to %s", self._sensor_path)
        return True

    def stop_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            try:
                listener.close()
            except Exception as exc:
                logger.warning("Error closing sensor listener: %s", exc)

    def _on_sensor_event(self, event_type: str, _data: Any) -> None:
        now = self._monotonic()
        with self._lock:
            if self._last_push_check is not None and now - self._last_push_check < self._listener_min_gap:
                return
            self._last_push_check = now
        logger.debug("Sensor update (%s) received; running threshold check", event_type)
        self.evaluate(trigger="push")

    # ── Evaluation ───────────────────────────────────────────────────

    def _next_job_ms(self) -> int:
        ms = self._clock_ms()
        if ms <= self._last_id_ms:
            ms = self._last_id_ms + 1
        self._last_id_ms = ms
        return ms

    @synchronized
    def evaluate(self, trigger: str = "poll") -> List[str]:
        """Run one threshold check; returns ids of newly queued jobs."""
        self._checks += 1
        try:
            sensors = self._store.read(self._sensor_path)
            if not isinstance(sensors, Mapping):
                logger.info("Threshold check #%d: no sensor data at %s", self._checks, self._sensor_path)
                return []
            control = self._store.read(self._control_path)
        except StoreUnavailableError as exc:
            logger.warning("Threshold check #%d (%s) skipped: %s", self._checks, trigger, exc)
            return []

        if not isinstance(control, Mapping):
            logger.info("Threshold check #%d: no control document at %s", self._checks, self._control_path)
            return []

        try:
            flags = ControlFlags.model_validate(dict(control))
        except PydanticValidationError as exc:
            logger.warning("Control flags unreadable: %s", exc)
            return []
        if not flags.sensor_mode:
            logger.debug("Threshold check #%d: sensor mode disabled", self._checks)
            return []

        names = sorted(k for k in control if str(k).startswith(ControlKeys.THRESHOLD_PREFIX))
        if not names:
            logger.debug("Threshold check #%d: no thresholds configured", self._checks)
            return []

        queued: List[str] = []
        for name in names:
            entry = self._parse_entry(name, control[name])
            if entry is None or not entry.active:
                continue
            job = self._evaluate_entry(name, entry, sensors)
            if job is None:
                continue

            try:
                inserted = self._queue.enqueue(job)
            except RepositoryError as exc:
                logger.error("Failed to queue %s: %s", job.job_id, exc)
                continue

            self.cooldowns.stamp(job.pots)
            if inserted:
                logger.info(
                    "Threshold %s triggered (%s): pots=%s mode=%s window=%s-%s%%",
                    name,
                    trigger,
                    job.pots,
                    "smart" if entry.smart_mode else "fixed",
                    entry.lower_bound,
                    entry.upper_bound,
                )
                queued.append(job.job_id)
        return queued

    def _parse_entry(self, name: str, raw: Any) -> Optional[ThresholdEntry]:
        try:
            return validate_entry(ThresholdEntry, name, raw)
        except ValidationError as exc:
            logger.warning("Skipping threshold %s: %s", name, exc)
            return None

    def _evaluate_entry(self, name: str, entry: ThresholdEntry, sensors: Mapping) -> Optional[WateringJob]:
        needs_water: List[int] = []
        top_up: List[int] = []
        readings: Dict[str, float] = {}

        for pot in entry.active_pots:
            if not WateringDefaults.POT_MIN <= pot <= WateringDefaults.POT_MAX:
                logger.warning("%s: invalid pot number %s (must be 1-5)", name, pot)
                continue
            moisture = read_moisture(sensors, pot)
            if moisture is None:
                logger.warning("%s: no usable reading for pot %s (%s)", name, pot, soil_key(pot))
                continue
            readings[str(pot)] = moisture

            if moisture >= entry.upper_bound:
                logger.debug("%s: pot %s at %s%% is at/above %s%%, skipping", name, pot, moisture, entry.upper_bound)
                continue

            remaining = self.cooldowns.remaining(pot)
            if moisture < entry.lower_bound:
                if remaining > 0:
                    logger.info("%s: pot %s dry (%s%%) but cooling down for %.0fs", name, pot, moisture, remaining)
                    continue
                needs_water.append(pot)
            elif entry.smart_mode and remaining <= 0:
                top_up.append(pot)

        if not needs_water:
            return None

        selected = set(needs_water) | (set(top_up) if entry.smart_mode else set())
        pots = [pot for pot in entry.active_pots if pot in selected]

        return WateringJob(
            job_id=threshold_job_id(name, self._next_job_ms()),
            source=JobSource.THRESHOLD,
            pots=pots,
            duration_seconds=entry.duration_seconds,
            history_type=SENSOR_THRESHOLD_TYPE,
            pump_water=entry.pump_water,
            pump_fertilizer=entry.pump_fertilizer,
            smart_mode=entry.smart_mode,
            target_bounds=TargetBounds(lower=entry.lower_bound, upper=entry.upper_bound),
            trigger_name=name,
            sensor_context={
                "mode": "smart" if entry.smart_mode else "fixed",
                "lower": entry.lower_bound,
                "upper": entry.upper_bound,
                "pot_values": {str(pot): readings[str(pot)] for pot in pots},
            },
        )
