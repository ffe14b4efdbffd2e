"""Repository facades exposing typed accessors over low-level mixins."""

from infrastructure.database.repositories.job_queue import JobQueueRepository

__all__ = [
    "JobQueueRepository",
]
