"""
Scheduled Tasks: periodic task definitions for the UnifiedScheduler.

Tasks are organized by namespace:
- irrigation.*: schedule and threshold evaluation
- history.*: sensor auto-log and retention cleanup
- maintenance.*: health check, heartbeat, queue pruning, startup diagnostics

Usage:
    from app.workers.scheduled_tasks import register_all_tasks, schedule_default_jobs

    register_all_tasks(container.scheduler, container)
    schedule_default_jobs(container.scheduler, container.config)
    container.scheduler.start()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any

from app.constants import Intervals
from app.domain.exceptions import RepositoryError, StoreUnavailableError

if TYPE_CHECKING:
    from app.config import AppConfig
    from app.services.container import ServiceContainer
    from app.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

TASK_SOFT_ERRORS = (
    StoreUnavailableError,
    RepositoryError,
    RuntimeError,
    ValueError,
    OSError,
)


# ==================== Irrigation Namespace ====================


def irrigation_schedule_check_task(container: "ServiceContainer") -> dict[str, Any]:
    """Match time-mode schedules against the current local minute."""
    queued = container.schedule_evaluator.evaluate()
    return {"queued": queued}


def irrigation_threshold_check_task(container: "ServiceContainer") -> dict[str, Any]:
    """Compare soil moisture against active thresholds."""
    queued = container.threshold_evaluator.evaluate(trigger="poll")
    return {"queued": queued}


# ==================== History Namespace ====================


def history_auto_log_task(container: "ServiceContainer") -> dict[str, Any]:
    return {"logged": container.history_recorder.record_snapshot()}


def history_cleanup_task(container: "ServiceContainer") -> dict[str, Any]:
    """
    Delete history dates older than the retention window.

    Runs daily at the configured cleanup time (site local).
    """
    recorder = container.history_recorder
    deleted = recorder.prune()
    return {"deleted_dates": deleted, "retention_days": recorder.retention_days}


# ==================== Maintenance Namespace ====================


def maintenance_health_check_task(container: "ServiceContainer") -> dict[str, Any]:
    return container.health_service.perform_health_check().to_dict()


def maintenance_heartbeat_task(container: "ServiceContainer") -> dict[str, Any]:
    return container.health_service.heartbeat()


def maintenance_prune_queue_task(container: "ServiceContainer") -> dict[str, Any]:
    results = {"deleted_rows": 0, "errors": []}
    try:
        results["deleted_rows"] = container.queue_repo.prune_finished()
    except TASK_SOFT_ERRORS as e:
        logger.error("Queue prune failed: %s", e)
        results["errors"].append(str(e))
    return results


def maintenance_startup_diagnostics_task(container: "ServiceContainer") -> dict[str, Any]:
    """
    One-shot checks after startup.

    - Log how the worker resolves UTC vs. site-local time
    - Make sure the actuator node exists with every channel defined
    """
    results: dict[str, Any] = {"time": container.health_service.log_time_analysis(), "errors": []}
    try:
        results["channels_added"] = container.executor.ensure_actuator_node()
    except TASK_SOFT_ERRORS as e:
        logger.warning("Actuator node check failed: %s", e)
        results["errors"].append(str(e))
    return results


# ==================== Task Registration ====================


def register_all_tasks(
    scheduler: "UnifiedScheduler",
    container: "ServiceContainer",
) -> None:
    """
    Register every task function with the scheduler.

    Args:
        scheduler: UnifiedScheduler instance
        container: ServiceContainer with all services
    """
    logger.info("Registering scheduled tasks...")

    def bind(task_fn):
        @wraps(task_fn)
        def bound_task():
            try:
                return task_fn(container)
            except Exception as e:
                logger.exception("Scheduled task %s raised: %s", task_fn.__name__, e)
                # Re-raise so the scheduler records the failure
                raise

        return bound_task

    tasks = {
        "irrigation.schedule_check": irrigation_schedule_check_task,
        "irrigation.threshold_check": irrigation_threshold_check_task,
        "history.auto_log": history_auto_log_task,
        "history.cleanup": history_cleanup_task,
        "maintenance.health_check": maintenance_health_check_task,
        "maintenance.heartbeat": maintenance_heartbeat_task,
        "maintenance.prune_queue": maintenance_prune_queue_task,
        "maintenance.startup_diagnostics": maintenance_startup_diagnostics_task,
    }
    for name, task_fn in tasks.items():
        scheduler.register_task(name, bind(task_fn))

    logger.info("Registered %s tasks", len(tasks))


def schedule_default_jobs(scheduler: "UnifiedScheduler", config: "AppConfig") -> None:
    """
    Schedule the registered tasks with configured timing.

    Call this after register_all_tasks().
    """
    logger.info("Scheduling default jobs...")

    # Schedule checks must run at least once per minute or a minute can be missed
    scheduler.schedule_interval(
        "irrigation.schedule_check",
        interval_seconds=config.schedule_interval_seconds,
        task_id="irrigation_schedule_check",
        first_run_delay=Intervals.SCHEDULE_FIRST_RUN_DELAY,
    )

    scheduler.schedule_interval(
        "irrigation.threshold_check",
        interval_seconds=config.threshold_interval_seconds,
        task_id="irrigation_threshold_check",
        first_run_delay=Intervals.THRESHOLD_FIRST_RUN_DELAY,
    )

    scheduler.schedule_interval(
        "history.auto_log",
        interval_seconds=config.history_autolog_interval_seconds,
        task_id="history_auto_log",
    )

    scheduler.schedule_daily(
        "history.cleanup",
        time_of_day=config.history_cleanup_time,
        task_id="history_cleanup_daily",
    )

    scheduler.schedule_interval(
        "maintenance.health_check",
        interval_seconds=config.health_interval_seconds,
        task_id="maintenance_health_check",
        first_run_delay=Intervals.HEALTH_FIRST_RUN_DELAY,
    )

    scheduler.schedule_interval(
        "maintenance.heartbeat",
        interval_seconds=Intervals.HEARTBEAT,
        task_id="maintenance_heartbeat",
    )

    scheduler.schedule_interval(
        "maintenance.prune_queue",
        interval_seconds=3600,
        task_id="maintenance_prune_queue_hourly",
    )

    scheduler.schedule_once(
        "maintenance.startup_diagnostics",
        run_at=scheduler.now() + timedelta(seconds=Intervals.DIAGNOSTICS_DELAY),
        task_id="maintenance_startup_diagnostics",
    )

    jobs = scheduler.get_jobs()
    logger.info("Scheduled %s default jobs", len(jobs))
    for job in jobs:
        logger.debug("  - %s: %s", job.task_id, job.schedule_type.value)
