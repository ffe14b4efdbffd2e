"""
Queue Consumer
==============
Single background thread that claims watering jobs from the durable queue
and hands them to the executor, one at a time. At most one job is ever
physically running.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional

from app.constants import Intervals
from app.domain.exceptions import JobExecutionError

if TYPE_CHECKING:
    from app.services.application.watering_executor import WateringExecutor
    from infrastructure.database.repositories.job_queue import JobQueueRepository

logger = logging.getLogger(__name__)


class QueueConsumer:
    """Claims, executes and finalizes queued watering jobs."""

    def __init__(
        self,
        queue_repo: "JobQueueRepository",
        executor: "WateringExecutor",
        *,
        idle_poll_seconds: float = Intervals.QUEUE_IDLE_POLL,
    ):
        self._queue = queue_repo
        self._executor = executor
        self._idle_poll = idle_poll_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._current_job: Optional[str] = None
        self.processed = 0
        self.failed = 0

    @property
    def current_job(self) -> Optional[str]:
        return self._current_job

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Queue consumer already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="WateringQueueConsumer", daemon=True)
        self._thread.start()
        logger.info("Queue consumer started")

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop claiming new jobs and wait up to ``timeout`` for the current one.

        Returns:
            True when the consumer thread has exited.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        stopped = not thread.is_alive()
        if stopped:
            self._thread = None
            logger.info("Queue consumer stopped")
        else:
            logger.warning("Queue consumer still busy with %s after %.0fs", self._current_job, timeout)
        return stopped

    def _run_loop(self) -> None:
        logger.debug("Queue consumer loop started")
        while not self._stop_event.is_set():
            try:
                worked = self.run_once()
            except Exception as e:
                logger.error("Error in queue consumer loop: %s", e, exc_info=True)
                worked = False
            if not worked:
                self._stop_event.wait(self._idle_poll)
        logger.debug("Queue consumer loop ended")

    def run_once(self) -> bool:
        """Claim and run one job; returns False when the queue was empty."""
        job = self._queue.claim_next()
        if job is None:
            return False

        self._current_job = job.job_id
        try:
            outcome = self._executor.execute(job)
        except JobExecutionError as e:
            self.failed += 1
            logger.error("Job %s failed: %s (safety_off=%s)", job.job_id, e, e.safety_off)
            self._queue.mark_failed(job.job_id, str(e))
        except Exception as e:
            self.failed += 1
            logger.error("Job %s failed unexpectedly: %s", job.job_id, e, exc_info=True)
            self._queue.mark_failed(job.job_id, str(e))
        else:
            self.processed += 1
            self._queue.mark_completed(job.job_id, outcome.to_dict())
        finally:
            self._current_job = None
        return True
