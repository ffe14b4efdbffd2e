"""
Watering Executor
=================

Runs one watering job against the actuator node:

1. switch pumps and valves on in a single merge write
2. hold them open for the fixed duration, or in smart mode until every
   targeted pot reaches the upper bound (never longer than the duration)
3. switch exactly those channels off
4. record history and restart the per-pot cooldown

Any failure after the on-write triggers a best-effort write that turns
every known channel off before the job is reported failed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from app.constants import Intervals, StorePaths, WateringDefaults, soil_key
from app.domain.actuators import ChannelPlan, safety_off_payload
from app.domain.exceptions import JobExecutionError
from app.domain.trigger_state import CooldownTracker
from app.domain.watering_job import WateringJob
from app.services.application.threshold_evaluator import read_moisture
from app.utils.concurrency import synchronized, wait_for_condition

if TYPE_CHECKING:
    from app.services.protocols import HistorySink, StateStore

logger = logging.getLogger(__name__)


@dataclass
class WateringOutcome:
    """Result of a completed watering run."""
    job_id: str
    pots: List[int]
    channels: List[str]
    duration_seconds: int
    elapsed_seconds: float
    stopped_early: bool = False
    aborted: bool = False
    history_recorded: bool = True
    final_readings: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["elapsed_seconds"] = round(self.elapsed_seconds, 1)
        return data


class WateringExecutor:
    """Executes watering jobs one at a time with guaranteed shutoff."""

    def __init__(
        self,
        store: "StateStore",
        history: "HistorySink",
        cooldowns: CooldownTracker,
        *,
        actuator_path: str = StorePaths.ACTUATOR,
        sensor_path: str = StorePaths.SENSOR,
        smart_poll_seconds: float = Intervals.SMART_SENSOR_POLL,
        progress_interval_seconds: float = Intervals.FIXED_PROGRESS,
        max_duration_seconds: int = WateringDefaults.MAX_DURATION,
        clock: Callable[[], float] = time.monotonic,
        abort_event: Optional[threading.Event] = None,
    ):
        self._store = store
        self._history = history
        self._cooldowns = cooldowns
        self._actuator_path = actuator_path
        self._sensor_path = sensor_path
        self._smart_poll_seconds = smart_poll_seconds
        self._progress_interval_seconds = progress_interval_seconds
        self._max_duration_seconds = max_duration_seconds
        self._clock = clock
        self._abort = abort_event or threading.Event()
        self._lock = threading.RLock()
        self._current_job: Optional[str] = None

    @property
    def current_job(self) -> Optional[str]:
        return self._current_job

    def abort(self) -> None:
        """Cut the running wait short; the job still writes its off state."""
        self._abort.set()

    # ── Execution ────────────────────────────────────────────────────

    @synchronized
    def execute(self, job: WateringJob) -> WateringOutcome:
        """Run ``job`` to completion.

        Raises:
            JobExecutionError: the job failed; actuators were sent a safety-off.
        """
        duration = int(job.duration_seconds)
        if duration > self._max_duration_seconds:
            logger.warning(
                "Job %s duration %ss exceeds cap, clamping to %ss",
                job.job_id,
                duration,
                self._max_duration_seconds,
            )
            duration = self._max_duration_seconds
        if duration <= 0:
            raise JobExecutionError(f"Job {job.job_id} has no duration", job_id=job.job_id)

        plan = ChannelPlan.for_job(job)
        if not plan:
            raise JobExecutionError(f"Job {job.job_id} targets no actuator channel", job_id=job.job_id)

        self._current_job = job.job_id
        logger.info("Processing job %s: channels=%s", job.describe(), ", ".join(plan.channels))
        try:
            return self._run(job, plan, duration)
        finally:
            self._current_job = None

    def _run(self, job: WateringJob, plan: ChannelPlan, duration: int) -> WateringOutcome:
        try:
            self._store.update(self._actuator_path, plan.on_payload())
        except Exception as exc:
            safety_off = self.safety_off()
            raise JobExecutionError(
                f"Failed to switch on actuators for {job.job_id}: {exc}",
                job_id=job.job_id,
                safety_off=safety_off,
            ) from exc

        started = self._clock()
        final_readings: Dict[str, float] = {}
        try:
            if job.is_smart:
                target = job.target_bounds.upper

                def _reached() -> bool:
                    readings = self._read_targets(job)
                    final_readings.clear()
                    final_readings.update(readings)
                    elapsed = self._clock() - started
                    logger.info(
                        "[%ss] %s | target %s%% | max %ss",
                        int(elapsed),
                        ", ".join(f"pot {pot}: {value}%" for pot, value in readings.items()) or "no readings",
                        target,
                        duration,
                    )
                    return len(readings) == len(job.valid_pots) and all(
                        value >= target for value in readings.values()
                    )

                logger.info("Smart mode: watering until all pots reach %s%% (max %ss)", target, duration)
                stopped_early = wait_for_condition(
                    _reached,
                    timeout=duration,
                    interval=self._smart_poll_seconds,
                    cancel=self._abort,
                    clock=self._clock,
                )
                if stopped_early and not self._abort.is_set():
                    logger.info("Target reached for %s, stopping early", job.job_id)
                elif not stopped_early:
                    logger.info("Max duration %ss reached for %s", duration, job.job_id)
            else:
                stopped_early = wait_for_condition(
                    None,
                    timeout=duration,
                    interval=self._progress_interval_seconds,
                    cancel=self._abort,
                    clock=self._clock,
                    on_tick=lambda elapsed: logger.info(
                        "%s: %ss remaining", job.job_id, max(0, int(round(duration - elapsed)))
                    ),
                )

            aborted = self._abort.is_set()
            stopped_early = stopped_early and not aborted
            if aborted:
                logger.warning("Job %s aborted by shutdown", job.job_id)

            self._store.update(self._actuator_path, plan.off_payload())
            logger.info("Turned off: %s", ", ".join(plan.channels))
        except Exception as exc:
            safety_off = self.safety_off()
            raise JobExecutionError(
                f"Job {job.job_id} failed while watering: {exc}",
                job_id=job.job_id,
                safety_off=safety_off,
            ) from exc

        elapsed = self._clock() - started
        recorded = self._history.record_watering(
            job, elapsed, duration_seconds=duration, stopped_early=stopped_early
        )
        self._cooldowns.stamp(job.valid_pots)

        logger.info("Job %s completed in %.1fs", job.job_id, elapsed)
        return WateringOutcome(
            job_id=job.job_id,
            pots=list(job.pots),
            channels=list(plan.channels),
            duration_seconds=duration,
            elapsed_seconds=elapsed,
            stopped_early=stopped_early,
            aborted=aborted,
            history_recorded=recorded,
            final_readings=final_readings,
        )

    def _read_targets(self, job: WateringJob) -> Dict[str, float]:
        """Current moisture of every targeted pot; a store failure propagates."""
        sensors = self._store.read(self._sensor_path)
        if not isinstance(sensors, Mapping):
            logger.warning("No sensor data while watering %s", job.job_id)
            return {}
        readings: Dict[str, float] = {}
        for pot in job.valid_pots:
            value = read_moisture(sensors, pot)
            if value is None:
                logger.warning("No usable reading for pot %s (%s)", pot, soil_key(pot))
                continue
            readings[str(pot)] = value
        return readings

    def ensure_actuator_node(self) -> List[str]:
        """Create missing actuator channels as ``False``; returns the channels written."""
        current = self._store.read(self._actuator_path)
        if not isinstance(current, Mapping):
            self._store.set(self._actuator_path, safety_off_payload())
            logger.info("Actuator node %s created with all channels off", self._actuator_path)
            return list(safety_off_payload())

        missing = {channel: False for channel in safety_off_payload() if channel not in current}
        if missing:
            self._store.update(self._actuator_path, missing)
            logger.info("Actuator node: added missing channels %s", ", ".join(missing))
        else:
            logger.info("Actuator node %s has all channels", self._actuator_path)
        return list(missing)

    def safety_off(self) -> bool:
        """Best-effort write switching every known channel off."""
        try:
            self._store.update(self._actuator_path, safety_off_payload())
        except Exception as exc:
            logger.critical("Safety OFF failed, actuators may still be on: %s", exc)
            return False
        logger.warning("Safety: all actuators turned OFF")
        return True
