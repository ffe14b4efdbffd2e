"""
Centralized scheduling for the worker's periodic tasks.

Every recurring check (schedule matching, threshold polling, history
auto-log and cleanup, health checks) goes through this one scheduler.

Design:
- Single scheduler loop thread
- Bounded worker pool for task execution
- A task never overlaps itself: a run that comes due while the previous
  run is still executing is skipped and counted
- Interval tasks advance from the scheduled time (fixed-rate), daily tasks
  fire at a wall-clock time in the site timezone
"""

from __future__ import annotations

import heapq
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from app.utils.time import get_zone, parse_time_of_day, utc_now

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    """Types of schedules."""

    INTERVAL = "interval"  # Every N seconds
    DAILY = "daily"  # At a local time each day
    ONCE = "once"  # One-time execution


@dataclass
class TaskRun:
    """Result of one task execution."""

    task_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class ScheduledTask:
    """A registered task bound to a schedule."""

    task_id: str
    task_name: str
    schedule_type: ScheduleType
    enabled: bool = True

    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    interval_seconds: float | None = None  # INTERVAL
    time_of_day: str | None = None  # "HH:MM" local, DAILY
    run_at: datetime | None = None  # ONCE

    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_overlaps: int = 0
    last_error: str | None = None
    running: bool = False


class UnifiedScheduler:
    """
    Scheduler for all periodic worker tasks.

    Heap entries are ``(run_at_ts, seq, task_id)``; entries are never removed
    in place. Stale ones (finished one-shot tasks or rescheduled runs) are skipped
    when popped.
    """

    def __init__(
        self,
        *,
        timezone: str = "UTC",
        check_interval_seconds: float = 1.0,
        max_history: int = 500,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            timezone: IANA zone used for daily schedules
            check_interval_seconds: How often the loop looks for due tasks
            max_history: Maximum execution history to keep
            max_workers: Maximum number of concurrently executing tasks
            clock: Returns the current aware UTC datetime
        """
        self._timezone = timezone
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)
        self._max_workers = int(max_workers)
        self._clock = clock

        self._tasks: dict[str, Callable] = {}  # task_name -> function
        self._jobs: dict[str, ScheduledTask] = {}
        self._heap: list[tuple[float, int, str]] = []
        self._heap_seq = 0
        self._history: list[TaskRun] = []

        self._stop_event = threading.Event()
        self._running = False
        self._thread: threading.Thread | None = None
        self._lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None

    # ==================== Task Registration ====================

    def register_task(self, name: str, func: Callable) -> None:
        """Register a task function under ``name``."""
        self._tasks[name] = func
        logger.debug("Registered task: %s", name)

    # ==================== Scheduling ====================

    def _push_heap(self, job: ScheduledTask) -> None:
        if not job.enabled or not job.next_run:
            return
        self._heap_seq += 1
        heapq.heappush(self._heap, (job.next_run.timestamp(), self._heap_seq, job.task_id))

    def _add_job(self, job: ScheduledTask) -> ScheduledTask:
        if job.task_name not in self._tasks:
            raise ValueError(f"Unknown task: {job.task_name}")
        with self._lock:
            self._jobs[job.task_id] = job
            self._push_heap(job)
        return job

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: float,
        *,
        task_id: str | None = None,
        first_run_delay: float | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Run ``task_name`` every ``interval_seconds``.

        The first run happens after ``first_run_delay`` seconds, or one full
        interval when no delay is given.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        delay = interval_seconds if first_run_delay is None else max(0.0, float(first_run_delay))
        job = ScheduledTask(
            task_id=task_id or task_name,
            task_name=task_name,
            schedule_type=ScheduleType.INTERVAL,
            args=args,
            kwargs=kwargs or {},
            interval_seconds=float(interval_seconds),
            next_run=self._clock() + timedelta(seconds=delay),
        )
        self._add_job(job)
        logger.info("Scheduled interval task: %s (every %ss, first in %ss)", job.task_id, interval_seconds, delay)
        return job

    def schedule_daily(
        self,
        task_name: str,
        time_of_day: str,
        *,
        task_id: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Run ``task_name`` each day at ``time_of_day`` (HH:MM, site local time)."""
        normalized = parse_time_of_day(time_of_day)
        if normalized is None:
            raise ValueError(f"Invalid time of day: {time_of_day!r}")
        job = ScheduledTask(
            task_id=task_id or f"{task_name}_daily_{normalized.replace(':', '')}",
            task_name=task_name,
            schedule_type=ScheduleType.DAILY,
            args=args,
            kwargs=kwargs or {},
            time_of_day=normalized,
            next_run=self._next_daily(normalized, self._clock()),
        )
        self._add_job(job)
        logger.info("Scheduled daily task: %s (at %s %s)", job.task_id, normalized, self._timezone)
        return job

    def schedule_once(
        self,
        task_name: str,
        run_at: datetime,
        *,
        task_id: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Run ``task_name`` once at ``run_at``."""
        job = ScheduledTask(
            task_id=task_id or f"{task_name}_once_{int(run_at.timestamp())}",
            task_name=task_name,
            schedule_type=ScheduleType.ONCE,
            args=args,
            kwargs=kwargs or {},
            run_at=run_at,
            next_run=run_at,
        )
        self._add_job(job)
        logger.info("Scheduled one-time task: %s (at %s)", job.task_id, run_at.isoformat())
        return job

    def run_now(self, task_name: str, *, args: tuple = (), kwargs: dict[str, Any] | None = None) -> TaskRun | None:
        """Run a registered task synchronously on the caller's thread."""
        func = self._tasks.get(task_name)
        if func is None:
            logger.error("Task not found: %s", task_name)
            return None

        started_at = self._clock()
        try:
            result = func(*args, **(kwargs or {}))
        except Exception as e:
            logger.error("Immediate task %s failed: %s", task_name, e, exc_info=True)
            run = TaskRun(task_name, False, started_at, self._clock(), error=str(e))
        else:
            run = TaskRun(task_name, True, started_at, self._clock(), result=result)
        self._record_history(run)
        return run

    # ==================== Task Lookup ====================

    def get_job(self, task_id: str) -> ScheduledTask | None:
        return self._jobs.get(task_id)

    def get_jobs(self) -> list[ScheduledTask]:
        return list(self._jobs.values())

    # ==================== Scheduler Control ====================

    def start(self) -> None:
        """Start the scheduler loop thread."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="SchedulerTask")
        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="UnifiedScheduler")
        self._thread.start()
        logger.info("UnifiedScheduler started with %d task(s)", len(self._jobs))

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        """Stop the loop and the task pool.

        Args:
            wait: Wait for the loop thread and running tasks to finish
            timeout: Maximum wait for the loop thread in seconds
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if wait and self._thread:
            self._thread.join(timeout=timeout)

        if self._executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None

        logger.info("UnifiedScheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def now(self) -> datetime:
        return self._clock()

    def _run_loop(self) -> None:
        logger.debug("Scheduler loop started")
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error("Error in scheduler loop: %s", e, exc_info=True)
            self._stop_event.wait(self._check_interval)
        logger.debug("Scheduler loop ended")

    # ==================== Core Scheduling Logic ====================

    def run_pending(self, now: datetime | None = None) -> list[str]:
        """Dispatch every task that is due at ``now``.

        Tasks run on the worker pool when the scheduler is started and inline
        otherwise. Returns the ids of tasks dispatched.
        """
        now = now or self._clock()
        now_ts = now.timestamp()
        due: list[tuple[str, datetime]] = []

        with self._lock:
            while self._heap:
                run_at_ts, _seq, task_id = self._heap[0]
                if run_at_ts > now_ts:
                    break
                heapq.heappop(self._heap)

                job = self._jobs.get(task_id)
                if not job or not job.enabled or not job.next_run:
                    continue
                if abs(job.next_run.timestamp() - run_at_ts) > 1e-6:
                    continue

                scheduled_for = job.next_run
                self._schedule_next_run(job, now, scheduled_time=scheduled_for)
                self._push_heap(job)

                if job.running:
                    job.skipped_overlaps += 1
                    logger.warning("Task %s still running, skipping run due %s", task_id, scheduled_for.isoformat())
                    continue
                job.running = True
                due.append((task_id, scheduled_for))

        for task_id, scheduled_for in due:
            if self._executor is not None:
                self._executor.submit(self._execute_job, task_id, scheduled_for)
            else:
                self._execute_job(task_id, scheduled_for)
        return [task_id for task_id, _ in due]

    def _execute_job(self, task_id: str, scheduled_for: datetime) -> None:
        with self._lock:
            job = self._jobs.get(task_id)
        if not job:
            return

        started_at = self._clock()
        try:
            func = self._tasks.get(job.task_name)
            if func is None:
                raise ValueError(f"Task function not found: {job.task_name}")
            result = func(*job.args, **job.kwargs)
        except Exception as e:
            with self._lock:
                job.last_run = started_at
                job.run_count += 1
                job.failure_count += 1
                job.last_error = str(e)
                job.running = False
            self._record_history(TaskRun(task_id, False, started_at, self._clock(), error=str(e)))
            logger.error("Task %s failed: %s", task_id, e, exc_info=True)
            return

        completed_at = self._clock()
        with self._lock:
            job.last_run = started_at
            job.run_count += 1
            job.success_count += 1
            job.last_error = None
            job.running = False
        run = TaskRun(task_id, True, started_at, completed_at, result=result)
        self._record_history(run)
        logger.debug(
            "Task %s completed in %.2fs (scheduled_for=%s)",
            task_id,
            run.duration_seconds,
            scheduled_for.isoformat(),
        )

    def _schedule_next_run(
        self,
        job: ScheduledTask,
        now: datetime,
        *,
        scheduled_time: datetime | None = None,
    ) -> None:
        if job.schedule_type is ScheduleType.INTERVAL:
            interval = float(job.interval_seconds or 60)
            next_run = (scheduled_time or now) + timedelta(seconds=interval)
            # Far behind (e.g. host slept): jump to the first future slot
            if next_run <= now:
                skips = int((now - next_run).total_seconds() // interval) + 1
                next_run += timedelta(seconds=skips * interval)
            job.next_run = next_run
        elif job.schedule_type is ScheduleType.DAILY:
            job.next_run = self._next_daily(job.time_of_day or "00:00", now)
        else:
            job.next_run = None
            job.enabled = False

    def _next_daily(self, time_of_day: str, now: datetime) -> datetime:
        """Next occurrence of a local ``HH:MM`` after ``now``."""
        zone = get_zone(self._timezone)
        local_now = now.astimezone(zone)
        hour, minute = map(int, time_of_day.split(":"))
        candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= local_now:
            candidate = (candidate + timedelta(days=1)).replace(hour=hour, minute=minute)
        return candidate

    def _record_history(self, run: TaskRun) -> None:
        with self._lock:
            self._history.append(run)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history :]

    # ==================== Health ====================

    def health_check(self) -> dict[str, Any]:
        """
        Summarize scheduler health.

        Unhealthy when the loop is stopped or more than half of the recent
        runs failed; degraded when an interval task is more than three
        intervals overdue or more than a fifth of recent runs failed.
        """
        with self._lock:
            now = self._clock()
            recent = self._history[-50:]
            failures = [r for r in recent if not r.success]
            failure_rate = len(failures) / len(recent) if recent else 0.0

            stale = []
            for job in self._jobs.values():
                if not job.enabled or job.last_run is None or job.schedule_type is not ScheduleType.INTERVAL:
                    continue
                since = (now - job.last_run).total_seconds()
                if since > (job.interval_seconds or 60) * 3:
                    stale.append({"task_id": job.task_id, "seconds_since_last_run": round(since, 1)})

            if not self._running:
                health, reason = "unhealthy", "Scheduler is not running"
            elif failure_rate > 0.5:
                health, reason = "unhealthy", f"High failure rate: {failure_rate:.0%}"
            elif stale:
                health, reason = "degraded", f"{len(stale)} stale task(s) detected"
            elif failure_rate > 0.2:
                health, reason = "degraded", f"Elevated failure rate: {failure_rate:.0%}"
            else:
                health, reason = "healthy", "All tasks on schedule"

            return {
                "health": health,
                "healthy": health == "healthy",
                "reason": reason,
                "timestamp": now.isoformat(),
                "scheduler_running": self._running,
                "recent_executions": len(recent),
                "recent_failures": len(failures),
                "failure_rate": round(failure_rate, 3),
                "stale_tasks": stale,
            }
