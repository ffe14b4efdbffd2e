"""Database operations for the durable watering job queue."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from typing import Any

from app.domain.exceptions import RepositoryError
from app.enums import JobStatus
from app.utils.time import iso_now

logger = logging.getLogger(__name__)

_FINISHED_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobQueueOperations:
    """Mixin with the SQL behind :class:`JobQueueRepository`.

    Expects ``get_db()`` from the handler it is mixed into.
    """

    def create_job_queue_tables(self, db: sqlite3.Connection) -> None:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS WateringJobQueue (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL UNIQUE,
                source TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'waiting',
                payload TEXT NOT NULL,
                result TEXT,
                error TEXT,
                enqueued_at TEXT NOT NULL,
                started_at TEXT,
                finished_at TEXT
            )
            """
        )
        db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_watering_queue_claim
            ON WateringJobQueue(status, priority DESC, seq)
            """
        )

    def insert_job(
        self,
        *,
        job_id: str,
        source: str,
        priority: int,
        payload: str,
        enqueued_at: str | None = None,
    ) -> bool:
        """Insert a waiting job; returns False when the job id already exists."""
        try:
            db = self.get_db()
            cur = db.execute(
                """
                INSERT OR IGNORE INTO WateringJobQueue
                    (job_id, source, priority, status, payload, enqueued_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, source, priority, JobStatus.WAITING.value, payload, enqueued_at or iso_now()),
            )
            db.commit()
            return cur.rowcount == 1
        except sqlite3.Error as exc:
            logger.error("Failed to enqueue job %s: %s", job_id, exc)
            raise RepositoryError(f"Failed to enqueue job {job_id}", detail={"job_id": job_id}) from exc

    def claim_next_job(self, current_time: str | None = None) -> dict[str, Any] | None:
        """Atomically move the highest-priority, oldest waiting job to active."""
        db = None
        try:
            db = self.get_db()
            now = current_time or iso_now()
            cur = db.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                """
                SELECT seq FROM WateringJobQueue
                WHERE status = ?
                ORDER BY priority DESC, seq ASC
                LIMIT 1
                """,
                (JobStatus.WAITING.value,),
            )
            row = cur.fetchone()
            if row is None:
                db.commit()
                return None

            cur.execute(
                """
                UPDATE WateringJobQueue
                SET status = ?, started_at = ?
                WHERE seq = ? AND status = ?
                """,
                (JobStatus.ACTIVE.value, now, row["seq"], JobStatus.WAITING.value),
            )
            if cur.rowcount != 1:
                db.rollback()
                return None

            cur.execute("SELECT * FROM WateringJobQueue WHERE seq = ?", (row["seq"],))
            claimed = cur.fetchone()
            db.commit()
            return dict(claimed) if claimed else None
        except sqlite3.Error as exc:
            logger.error("Failed to claim next job: %s", exc)
            if db is not None:
                with contextlib.suppress(Exception):
                    db.rollback()
            return None

    def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: str | None = None,
        error: str | None = None,
        finished_at: str | None = None,
    ) -> bool:
        try:
            db = self.get_db()
            cur = db.execute(
                """
                UPDATE WateringJobQueue
                SET status = ?, result = ?, error = ?, finished_at = ?
                WHERE job_id = ?
                """,
                (status.value, result, error, finished_at or iso_now(), job_id),
            )
            db.commit()
            return cur.rowcount == 1
        except sqlite3.Error as exc:
            logger.error("Failed to mark job %s %s: %s", job_id, status, exc)
            return False

    def prune_finished_jobs(self, keep_completed: int, keep_failed: int) -> int:
        """Keep only the newest ``keep_*`` finished jobs per status."""
        removed = 0
        try:
            db = self.get_db()
            for status, keep in ((JobStatus.COMPLETED, keep_completed), (JobStatus.FAILED, keep_failed)):
                cur = db.execute(
                    """
                    DELETE FROM WateringJobQueue
                    WHERE status = ?
                      AND seq NOT IN (
                          SELECT seq FROM WateringJobQueue
                          WHERE status = ?
                          ORDER BY finished_at DESC, seq DESC
                          LIMIT ?
                      )
                    """,
                    (status.value, status.value, max(0, int(keep))),
                )
                removed += max(cur.rowcount, 0)
            db.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to prune finished jobs: %s", exc)
        return removed

    def count_jobs_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        try:
            db = self.get_db()
            for row in db.execute("SELECT status, COUNT(*) AS total FROM WateringJobQueue GROUP BY status"):
                counts[row["status"]] = row["total"]
        except sqlite3.Error as exc:
            logger.error("Failed to count jobs: %s", exc)
            raise RepositoryError("Failed to count queued jobs") from exc
        return counts

    def get_recent_jobs(self, status: JobStatus, limit: int = 5) -> list[dict[str, Any]]:
        order = "finished_at DESC, seq DESC" if status.value in _FINISHED_STATUSES else "seq DESC"
        try:
            db = self.get_db()
            cur = db.execute(
                f"SELECT * FROM WateringJobQueue WHERE status = ? ORDER BY {order} LIMIT ?",  # nosec B608
                (status.value, int(limit)),
            )
            return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as exc:
            logger.error("Failed to list %s jobs: %s", status, exc)
            return []

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        try:
            db = self.get_db()
            row = db.execute("SELECT * FROM WateringJobQueue WHERE job_id = ?", (job_id,)).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Failed to load job %s: %s", job_id, exc)
            return None

    def fail_active_jobs(self, reason: str, finished_at: str | None = None) -> int:
        """Mark every job left ``active`` as failed; returns how many."""
        try:
            db = self.get_db()
            cur = db.execute(
                """
                UPDATE WateringJobQueue
                SET status = ?, error = ?, finished_at = ?
                WHERE status = ?
                """,
                (JobStatus.FAILED.value, reason, finished_at or iso_now(), JobStatus.ACTIVE.value),
            )
            db.commit()
            return cur.rowcount
        except sqlite3.Error as exc:
            logger.error("Failed to recover interrupted jobs: %s", exc)
            raise RepositoryError("Failed to recover interrupted jobs") from exc

    def ping(self) -> bool:
        try:
            self.get_db().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as exc:
            logger.warning("Queue database ping failed: %s", exc)
            return False
