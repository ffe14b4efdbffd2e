import threading
from unittest.mock import Mock

from app.domain.exceptions import JobExecutionError
from app.domain.watering_job import build_manual_job
from app.enums import JobStatus
from app.services.application.watering_executor import WateringOutcome
from app.workers.queue_consumer import QueueConsumer


def _outcome(job):
    return WateringOutcome(
        job_id=job.job_id,
        pots=job.pots,
        channels=["mosvet_1", "mosvet_3"],
        duration_seconds=job.duration_seconds,
        elapsed_seconds=10.04,
    )


def test_empty_queue_does_nothing(queue_repo):
    executor = Mock()
    consumer = QueueConsumer(queue_repo, executor)

    assert consumer.run_once() is False
    executor.execute.assert_not_called()


def test_successful_job_is_marked_completed(queue_repo):
    queue_repo.enqueue(build_manual_job([1], 10, epoch_ms=1))
    executor = Mock()
    executor.execute.side_effect = _outcome
    consumer = QueueConsumer(queue_repo, executor)

    assert consumer.run_once() is True

    row = queue_repo.get_recent(JobStatus.COMPLETED)[0]
    assert row["job_id"] == "manual_1"
    assert row["result"]["elapsed_seconds"] == 10.0
    assert row["result"]["channels"] == ["mosvet_1", "mosvet_3"]
    assert consumer.processed == 1
    assert consumer.current_job is None


def test_execution_error_marks_job_failed(queue_repo):
    queue_repo.enqueue(build_manual_job([1], 10, epoch_ms=2))
    executor = Mock()
    executor.execute.side_effect = JobExecutionError("pump write failed", job_id="manual_2", safety_off=True)
    consumer = QueueConsumer(queue_repo, executor)

    consumer.run_once()

    row = queue_repo.get_job("manual_2")
    assert row["status"] == JobStatus.FAILED.value
    assert row["error"] == "pump write failed"
    assert consumer.failed == 1


def test_unexpected_error_marks_job_failed_and_consumer_continues(queue_repo):
    queue_repo.enqueue(build_manual_job([1], 10, epoch_ms=3))
    queue_repo.enqueue(build_manual_job([2], 10, epoch_ms=4))

    def execute(job):
        if job.job_id == "manual_3":
            raise RuntimeError("boom")
        return _outcome(job)

    executor = Mock()
    executor.execute.side_effect = execute
    consumer = QueueConsumer(queue_repo, executor)

    consumer.run_once()
    consumer.run_once()

    assert queue_repo.get_job("manual_3")["status"] == JobStatus.FAILED.value
    assert queue_repo.get_job("manual_4")["status"] == JobStatus.COMPLETED.value


def test_jobs_run_one_at_a_time(queue_repo):
    for i in range(3):
        queue_repo.enqueue(build_manual_job([1], 10, epoch_ms=10 + i))

    active = []
    peak = []
    all_done = threading.Event()

    def execute(job):
        active.append(job.job_id)
        peak.append(len(active))
        active.remove(job.job_id)
        if len(peak) == 3:
            all_done.set()
        return _outcome(job)

    executor = Mock()
    executor.execute.side_effect = execute
    consumer = QueueConsumer(queue_repo, executor, idle_poll_seconds=0.01)

    consumer.start()
    try:
        assert all_done.wait(5)
    finally:
        assert consumer.stop(timeout=5) is True

    assert max(peak) == 1
    assert not consumer.is_running
