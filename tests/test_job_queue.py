import threading

from app.domain.watering_job import WateringJob, build_manual_job
from app.enums import JobSource, JobStatus
from infrastructure.database.repositories.job_queue import INTERRUPTED_REASON, JobQueueRepository


def _job(job_id, source=JobSource.SCHEDULED, pots=(1,)):
    return WateringJob(
        job_id=job_id,
        source=source,
        pots=list(pots),
        duration_seconds=30,
        history_type="waktu_" + job_id,
    )


def _drain(repo):
    claimed = []
    while True:
        job = repo.claim_next()
        if job is None:
            return claimed
        claimed.append(job.job_id)


def test_enqueue_is_idempotent_per_job_id(queue_repo):
    assert queue_repo.enqueue(_job("jadwal_1_2025-01-31_08_00")) is True
    assert queue_repo.enqueue(_job("jadwal_1_2025-01-31_08_00")) is False

    assert queue_repo.get_counts()[JobStatus.WAITING.value] == 1


def test_claim_round_trips_the_job(queue_repo):
    original = WateringJob.from_dict(_job("threshold_1_5", JobSource.THRESHOLD, pots=(2, 4)).to_dict())
    queue_repo.enqueue(original)

    claimed = queue_repo.claim_next()

    assert claimed == original
    assert queue_repo.get_job(claimed.job_id)["status"] == JobStatus.ACTIVE.value


def test_fifo_within_priority_and_manual_first(queue_repo):
    queue_repo.enqueue(_job("jadwal_1"))
    queue_repo.enqueue(_job("threshold_1_1", JobSource.THRESHOLD))
    queue_repo.enqueue(_job("jadwal_2"))
    queue_repo.enqueue(build_manual_job([3], 10, epoch_ms=7))
    queue_repo.enqueue(_job("threshold_2_2", JobSource.THRESHOLD))

    assert _drain(queue_repo) == ["manual_7", "threshold_1_1", "threshold_2_2", "jadwal_1", "jadwal_2"]


def test_empty_queue_claims_nothing(queue_repo):
    assert queue_repo.claim_next() is None


def test_each_job_is_claimed_once_across_threads(db_handler):
    repo = JobQueueRepository(db_handler)
    for i in range(20):
        repo.enqueue(_job(f"jadwal_{i}"))

    claimed = []
    lock = threading.Lock()

    def worker():
        for job_id in _drain(repo):
            with lock:
                claimed.append(job_id)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(claimed) == sorted(f"jadwal_{i}" for i in range(20))


def test_mark_completed_and_failed_record_outcome(queue_repo):
    queue_repo.enqueue(_job("a"))
    queue_repo.enqueue(_job("b"))
    queue_repo.claim_next()
    queue_repo.claim_next()

    assert queue_repo.mark_completed("a", {"elapsed_seconds": 30}) is True
    assert queue_repo.mark_failed("b", "pump stuck") is True

    done = queue_repo.get_recent(JobStatus.COMPLETED)
    assert done[0]["job_id"] == "a"
    assert done[0]["result"] == {"elapsed_seconds": 30}
    assert done[0]["payload"]["pots"] == [1]
    assert queue_repo.get_job("b")["error"] == "pump stuck"
    counts = queue_repo.get_counts()
    assert counts[JobStatus.COMPLETED.value] == 1
    assert counts[JobStatus.FAILED.value] == 1
    assert counts[JobStatus.ACTIVE.value] == 0


def test_finished_jobs_are_bounded(db_handler):
    repo = JobQueueRepository(db_handler, keep_completed=3, keep_failed=1)
    for i in range(5):
        repo.enqueue(_job(f"ok_{i}"))
        repo.claim_next()
        repo.mark_completed(f"ok_{i}")
    for i in range(3):
        repo.enqueue(_job(f"bad_{i}"))
        repo.claim_next()
        repo.mark_failed(f"bad_{i}", "boom")

    counts = repo.get_counts()
    assert counts[JobStatus.COMPLETED.value] == 3
    assert counts[JobStatus.FAILED.value] == 1
    assert [row["job_id"] for row in repo.get_recent(JobStatus.COMPLETED, 10)] == ["ok_4", "ok_3", "ok_2"]
    assert repo.get_job("bad_2") is not None


def test_waiting_jobs_are_never_pruned(db_handler):
    repo = JobQueueRepository(db_handler, keep_completed=0, keep_failed=0)
    repo.enqueue(_job("pending"))

    assert repo.prune_finished() == 0
    assert repo.get_counts()[JobStatus.WAITING.value] == 1


def test_recover_interrupted_fails_active_jobs(queue_repo):
    queue_repo.enqueue(_job("running"))
    queue_repo.enqueue(_job("queued"))
    queue_repo.claim_next()

    assert queue_repo.recover_interrupted() == 1

    row = queue_repo.get_job("running")
    assert row["status"] == JobStatus.FAILED.value
    assert row["error"] == INTERRUPTED_REASON
    assert queue_repo.get_job("queued")["status"] == JobStatus.WAITING.value
    assert queue_repo.recover_interrupted() == 0


def test_unreadable_payload_is_failed_not_returned(queue_repo, db_handler):
    db_handler.insert_job(job_id="broken", source="scheduled", priority=0, payload="{not json")
    queue_repo.enqueue(_job("good"))

    assert queue_repo.claim_next() is None
    assert queue_repo.get_job("broken")["status"] == JobStatus.FAILED.value
    assert queue_repo.claim_next().job_id == "good"


def test_queue_survives_reopen(tmp_path):
    from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

    path = str(tmp_path / "queue.db")
    first = SQLiteDatabaseHandler(path)
    first.create_tables()
    JobQueueRepository(first).enqueue(_job("persisted"))
    first.close_all()

    second = SQLiteDatabaseHandler(path)
    second.create_tables()
    try:
        assert JobQueueRepository(second).claim_next().job_id == "persisted"
    finally:
        second.close_all()


def test_ping(queue_repo):
    assert queue_repo.ping() is True
