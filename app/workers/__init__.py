"""
Background workers.

- unified_scheduler: scheduler for every periodic task
- scheduled_tasks: task definitions (irrigation.*, history.*, maintenance.*)
- queue_consumer: single consumer running queued watering jobs
- worker_cli: command-line entry point
"""

__all__ = [
    "QueueConsumer",
    "UnifiedScheduler",
    "register_all_tasks",
    "schedule_default_jobs",
]

from app.workers.queue_consumer import QueueConsumer
from app.workers.scheduled_tasks import register_all_tasks, schedule_default_jobs
from app.workers.unified_scheduler import UnifiedScheduler
