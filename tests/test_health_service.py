from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import Mock

from app.domain.watering_job import build_manual_job
from app.enums import HealthLevel, JobStatus
from app.services.utilities.system_health_service import QUEUE_BACKLOG_WARNING, SystemHealthService

from conftest import SITE_TZ, utc


class StepClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def _service(store, queue_repo, **kwargs):
    clock = StepClock(utc(2025, 1, 31, 1, 0, 0))
    kwargs.setdefault("consumer", SimpleNamespace(is_running=True, current_job=None))
    service = SystemHealthService(store, queue_repo, timezone=SITE_TZ, clock=clock, **kwargs)
    return service, clock


def test_everything_reachable_is_healthy(store, tree, queue_repo):
    tree["kontrol_1"] = {"waktu": True}
    scheduler = Mock()
    scheduler.health_check.return_value = {"healthy": True}
    service, _ = _service(store, queue_repo, scheduler=scheduler)

    report = service.perform_health_check()

    assert report.level is HealthLevel.HEALTHY
    assert report.is_healthy
    assert report.store_reachable and report.queue_reachable
    assert report.queue_counts[JobStatus.WAITING.value] == 0
    assert report.to_dict()["level"] == "healthy"


def test_store_down_is_unhealthy(store, primary, fallback, queue_repo):
    primary.failing = True
    fallback.failing = True
    service, _ = _service(store, queue_repo)

    report = service.perform_health_check()

    assert report.level is HealthLevel.UNHEALTHY
    assert report.store_reachable is False


def test_queue_down_is_unhealthy(store):
    queue = Mock()
    queue.ping.return_value = False
    service, _ = _service(store, queue)

    report = service.perform_health_check()

    assert report.level is HealthLevel.UNHEALTHY
    assert report.queue_reachable is False


def test_forced_fallback_is_degraded(store, primary, queue_repo):
    primary.failing = True
    for _ in range(3):
        store.read("kontrol_1")
    service, _ = _service(store, queue_repo)

    report = service.perform_health_check()

    assert report.level is HealthLevel.DEGRADED
    assert report.transport["mode"] == "fallback_forced"


def test_backlog_and_dead_consumer_are_degraded(store, queue_repo):
    for i in range(QUEUE_BACKLOG_WARNING + 1):
        queue_repo.enqueue(build_manual_job([1], 10, epoch_ms=i))
    service, _ = _service(store, queue_repo, consumer=SimpleNamespace(is_running=False, current_job=None))

    report = service.perform_health_check()

    assert report.level is HealthLevel.DEGRADED
    assert len(report.issues) == 2
    assert report.consumer_alive is False


def test_unhealthy_scheduler_is_degraded(store, queue_repo):
    scheduler = Mock()
    scheduler.health_check.return_value = {"healthy": False, "reason": "Scheduler is not running"}
    service, _ = _service(store, queue_repo, scheduler=scheduler)

    assert service.perform_health_check().level is HealthLevel.DEGRADED


def test_heartbeat_reports_uptime_and_current_job(store, queue_repo):
    consumer = SimpleNamespace(is_running=True, current_job="jadwal_1_2025-01-31_08_00")
    service, clock = _service(store, queue_repo, consumer=consumer)
    clock.now += timedelta(seconds=90)

    assert service.heartbeat() == {"uptime_seconds": 90, "current_job": "jadwal_1_2025-01-31_08_00"}


def test_time_analysis_uses_site_timezone(store, queue_repo):
    service, _ = _service(store, queue_repo)

    analysis = service.log_time_analysis()

    assert analysis["date_key"] == "2025-01-31"
    assert analysis["time_key"] == "08:00"
    assert analysis["site_local"].endswith("+07:00")
