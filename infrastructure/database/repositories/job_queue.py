"""Repository for the durable watering job queue."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from app.constants import QueueRetention
from app.domain.watering_job import WateringJob
from app.enums import JobStatus

if TYPE_CHECKING:
    from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "interrupted"


class JobQueueRepository:
    """Durable FIFO-within-priority queue of :class:`WateringJob`.

    Jobs are deduplicated by ``job_id``. Claiming is atomic, so a job is
    handed to at most one consumer.
    """

    def __init__(
        self,
        db_handler: "SQLiteDatabaseHandler",
        *,
        keep_completed: int = QueueRetention.KEEP_COMPLETED,
        keep_failed: int = QueueRetention.KEEP_FAILED,
    ):
        self._db = db_handler
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed

    def enqueue(self, job: WateringJob) -> bool:
        """Queue ``job``; returns False if a job with the same id already exists.

        Raises:
            RepositoryError: the job could not be persisted.
        """
        inserted = self._db.insert_job(
            job_id=job.job_id,
            source=job.source.value,
            priority=job.priority,
            payload=json.dumps(job.to_dict()),
            enqueued_at=job.created_at.isoformat(),
        )
        if inserted:
            logger.info("Queued job %s", job.describe())
        else:
            logger.info("Job %s already queued, skipping", job.job_id)
        return inserted

    def claim_next(self) -> WateringJob | None:
        row = self._db.claim_next_job()
        if row is None:
            return None
        try:
            return WateringJob.from_dict(json.loads(row["payload"]))
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Discarding unreadable job %s: %s", row.get("job_id"), exc)
            self._db.finish_job(row["job_id"], JobStatus.FAILED, error=f"unreadable payload: {exc}")
            return None

    def mark_completed(self, job_id: str, result: dict[str, Any] | None = None) -> bool:
        ok = self._db.finish_job(job_id, JobStatus.COMPLETED, result=json.dumps(result or {}))
        self.prune_finished()
        return ok

    def mark_failed(self, job_id: str, error: str) -> bool:
        ok = self._db.finish_job(job_id, JobStatus.FAILED, error=error)
        self.prune_finished()
        return ok

    def prune_finished(self, keep_completed: int | None = None, keep_failed: int | None = None) -> int:
        return self._db.prune_finished_jobs(
            self.keep_completed if keep_completed is None else keep_completed,
            self.keep_failed if keep_failed is None else keep_failed,
        )

    def get_counts(self) -> dict[str, int]:
        return self._db.count_jobs_by_status()

    def get_recent(self, status: JobStatus, limit: int = 5) -> list[dict[str, Any]]:
        """Newest jobs in ``status`` with their payload and result decoded."""
        jobs = []
        for row in self._db.get_recent_jobs(status, limit):
            for key in ("payload", "result"):
                if row.get(key):
                    try:
                        row[key] = json.loads(row[key])
                    except ValueError:
                        pass
            jobs.append(row)
        return jobs

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        return self._db.get_job(job_id)

    def recover_interrupted(self) -> int:
        """Fail jobs a previous process left active; they are never re-run."""
        recovered = self._db.fail_active_jobs(INTERRUPTED_REASON)
        if recovered:
            logger.warning("Marked %d interrupted job(s) as failed", recovered)
        return recovered

    def ping(self) -> bool:
        return self._db.ping()
