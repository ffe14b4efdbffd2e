"""
System Health Service
=====================
Periodic self-check of the worker: store reachability, queue database
connectivity and depth, transport fallback state and the consumer thread.

Results are logged only; nothing here changes worker behaviour.
"""

import logging
import os
from datetime import datetime
from typing import Any, Callable

from app.domain.exceptions import RepositoryError
from app.domain.system import WorkerHealthReport
from app.enums import HealthLevel, JobStatus, TransportMode
from app.utils.time import local_date_key, local_time_key, to_local, utc_now

logger = logging.getLogger(__name__)

# Waiting jobs beyond this depth mark the worker degraded
QUEUE_BACKLOG_WARNING = 10


class SystemHealthService:
    """
    Worker health monitoring.

    Responsibilities:
    - Store and queue connectivity checks
    - Heartbeat with uptime
    - Startup time diagnostics
    """

    def __init__(
        self,
        state_client: Any,
        queue_repo: Any,
        *,
        consumer: Any | None = None,
        scheduler: Any | None = None,
        timezone: str = "Asia/Jakarta",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._state_client = state_client
        self._queue_repo = queue_repo
        self._consumer = consumer
        self._scheduler = scheduler
        self._timezone = timezone
        self._clock = clock
        self.uptime_start = clock()

    def get_uptime_seconds(self) -> int:
        return int((self._clock() - self.uptime_start).total_seconds())

    def perform_health_check(self) -> WorkerHealthReport:
        """Run every check and log a one-line summary."""
        issues = []

        store_ok = bool(self._state_client.ping())
        if not store_ok:
            issues.append("document store unreachable on every transport")

        queue_ok = bool(self._queue_repo.ping())
        counts: dict[str, int] = {}
        if queue_ok:
            try:
                counts = self._queue_repo.get_counts()
            except RepositoryError as exc:
                queue_ok = False
                logger.warning("Health: queue counts unavailable: %s", exc)
        if not queue_ok:
            issues.append("job queue database unreachable")

        transport = self._state_client.stats()
        if transport.get("mode") == TransportMode.FALLBACK_FORCED.value:
            issues.append("primary transport disabled; running on fallback")

        waiting = counts.get(JobStatus.WAITING.value, 0)
        if waiting > QUEUE_BACKLOG_WARNING:
            issues.append(f"{waiting} jobs waiting")

        consumer_alive = None
        current_job = None
        if self._consumer is not None:
            consumer_alive = bool(self._consumer.is_running)
            current_job = self._consumer.current_job
            if not consumer_alive:
                issues.append("queue consumer is not running")

        scheduler_status: dict[str, Any] = {}
        if self._scheduler is not None:
            scheduler_status = self._scheduler.health_check()
            if not scheduler_status.get("healthy", True):
                issues.append("scheduler unhealthy")

        if not store_ok or not queue_ok:
            level = HealthLevel.UNHEALTHY
        elif issues:
            level = HealthLevel.DEGRADED
        else:
            level = HealthLevel.HEALTHY

        report = WorkerHealthReport(
            timestamp=self._clock(),
            level=level,
            uptime_seconds=self.get_uptime_seconds(),
            store_reachable=store_ok,
            queue_reachable=queue_ok,
            queue_counts=counts,
            transport=transport,
            consumer_alive=consumer_alive,
            current_job=current_job,
            scheduler=scheduler_status,
            issues=issues,
        )

        summary = (
            f"Health {level}: store={'ok' if store_ok else 'DOWN'} "
            f"queue={'ok' if queue_ok else 'DOWN'} counts={counts} "
            f"transport={transport.get('mode')} "
            f"(primary={transport.get('primary_successes', 0)} "
            f"fallback={transport.get('fallback_successes', 0)} "
            f"failures={transport.get('failures', 0)})"
        )
        if level is HealthLevel.HEALTHY:
            logger.info(summary)
        else:
            logger.warning("%s issues=%s", summary, issues)
        return report

    def heartbeat(self) -> dict[str, Any]:
        info = {
            "uptime_seconds": self.get_uptime_seconds(),
            "current_job": self._consumer.current_job if self._consumer is not None else None,
        }
        logger.info("Heartbeat: uptime %ss, current job %s", info["uptime_seconds"], info["current_job"] or "none")
        return info

    def log_time_analysis(self) -> dict[str, str]:
        """Log how the worker sees the clock; schedule matching depends on it."""
        now = self._clock()
        analysis = {
            "utc": now.isoformat(),
            "site_local": to_local(now, self._timezone).isoformat(),
            "site_timezone": self._timezone,
            "date_key": local_date_key(now, self._timezone),
            "time_key": local_time_key(now, self._timezone),
            "tz_env": os.getenv("TZ", ""),
        }
        logger.info(
            "Time analysis: utc=%s local=%s (%s) keys=%s %s",
            analysis["utc"],
            analysis["site_local"],
            analysis["site_timezone"],
            analysis["date_key"],
            analysis["time_key"],
        )
        return analysis
