from unittest.mock import Mock

from app.domain.trigger_state import CooldownTracker
from app.domain.watering_job import SENSOR_THRESHOLD_TYPE
from app.enums import JobSource
from app.services.application.threshold_evaluator import ThresholdEvaluator, read_moisture

from conftest import FakeClock


def _threshold(**overrides):
    entry = {
        "aktif": True,
        "batas_bawah": 30,
        "batas_atas": 70,
        "durasi": 120,
        "smart_mode": True,
        "pot_aktif": [1, 2],
        "pompa_air": True,
    }
    entry.update(overrides)
    return entry


def _evaluator(store, queue, clock=None, cooldown=120, **kwargs):
    clock = clock or FakeClock()
    cooldowns = CooldownTracker(cooldown, clock=clock)
    ms = iter(range(1_700_000_000_000, 1_700_000_100_000, 1000))
    evaluator = ThresholdEvaluator(
        store,
        queue,
        cooldowns,
        control_path="kontrol_1",
        sensor_path="data",
        clock_ms=lambda: next(ms),
        monotonic=clock,
        **kwargs,
    )
    return evaluator, cooldowns, clock


def test_smart_entry_queues_dry_and_between_pots_together(store, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold()}
    tree["data"] = {"soil_1": 20, "soil_2": 50}
    evaluator, cooldowns, _ = _evaluator(store, queue_repo)

    queued = evaluator.evaluate()

    assert queued == ["threshold_1_1700000000000"]
    job = queue_repo.claim_next()
    assert job.source is JobSource.THRESHOLD
    assert job.pots == [1, 2]
    assert job.smart_mode is True
    assert job.target_bounds.lower == 30 and job.target_bounds.upper == 70
    assert job.history_type == SENSOR_THRESHOLD_TYPE
    assert job.sensor_context["pot_values"] == {"1": 20.0, "2": 50.0}
    assert cooldowns.is_cooling(1) and cooldowns.is_cooling(2)


def test_cooldown_blocks_retrigger_until_it_expires(store, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold()}
    tree["data"] = {"soil_1": 20, "soil_2": 50}
    evaluator, _, clock = _evaluator(store, queue_repo)

    assert len(evaluator.evaluate()) == 1
    clock.advance(60)
    assert evaluator.evaluate() == []
    clock.advance(61)
    assert len(evaluator.evaluate()) == 1


def test_fixed_mode_only_waters_pots_below_lower_bound(store, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold(smart_mode=False)}
    tree["data"] = {"soil_1": 20, "soil_2": 50}
    evaluator, cooldowns, _ = _evaluator(store, queue_repo)

    evaluator.evaluate()

    job = queue_repo.claim_next()
    assert job.pots == [1]
    assert job.smart_mode is False
    assert not cooldowns.is_cooling(2)


def test_no_dry_pot_means_no_job(store, tree):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold()}
    tree["data"] = {"soil_1": 45, "soil_2": 50}
    queue = Mock()
    evaluator, _, _ = _evaluator(store, queue)

    assert evaluator.evaluate() == []
    queue.enqueue.assert_not_called()


def test_pot_at_or_above_upper_bound_is_never_watered(store, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold(pot_aktif=[1, 2, 3])}
    tree["data"] = {"soil_1": 10, "soil_2": 70, "soil_3": 95}
    evaluator, _, _ = _evaluator(store, queue_repo)

    evaluator.evaluate()

    assert queue_repo.claim_next().pots == [1]


def test_invalid_bounds_skip_the_entry(store, tree):
    tree["kontrol_1"] = {
        "otomatis": True,
        "threshold_1": _threshold(batas_bawah=70, batas_atas=40),
    }
    tree["data"] = {"soil_1": 5, "soil_2": 5}
    queue = Mock()
    evaluator, _, _ = _evaluator(store, queue)

    assert evaluator.evaluate() == []
    queue.enqueue.assert_not_called()


def test_missing_or_bad_reading_skips_only_that_pot(store, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold(pot_aktif=[1, 2, 3])}
    tree["data"] = {"soil_1": "n/a", "soil_3": "12.5"}
    evaluator, _, _ = _evaluator(store, queue_repo)

    evaluator.evaluate()

    job = queue_repo.claim_next()
    assert job.pots == [3]
    assert job.sensor_context["pot_values"] == {"3": 12.5}


def test_sensor_mode_disabled_is_a_no_op(store, tree):
    tree["kontrol_1"] = {"otomatis": False, "threshold_1": _threshold()}
    tree["data"] = {"soil_1": 5}
    queue = Mock()
    evaluator, _, _ = _evaluator(store, queue)

    assert evaluator.evaluate() == []
    queue.enqueue.assert_not_called()


def test_inactive_entry_is_ignored(store, tree):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold(aktif=False)}
    tree["data"] = {"soil_1": 5}
    queue = Mock()
    evaluator, _, _ = _evaluator(store, queue)

    assert evaluator.evaluate() == []


def test_one_job_per_entry_per_check(store, tree, queue_repo):
    tree["kontrol_1"] = {
        "otomatis": True,
        "threshold_1": _threshold(pot_aktif=[1], smart_mode=False),
        "threshold_2": _threshold(pot_aktif=[2], smart_mode=False),
    }
    tree["data"] = {"soil_1": 5, "soil_2": 5}
    evaluator, _, _ = _evaluator(store, queue_repo)

    queued = evaluator.evaluate()

    assert queued == ["threshold_1_1700000000000", "threshold_2_1700000001000"]


def test_job_ids_stay_unique_within_the_same_millisecond(store, tree, queue_repo):
    tree["kontrol_1"] = {
        "otomatis": True,
        "threshold_1": _threshold(pot_aktif=[1], smart_mode=False),
        "threshold_2": _threshold(pot_aktif=[2], smart_mode=False),
    }
    tree["data"] = {"soil_1": 5, "soil_2": 5}
    cooldowns = CooldownTracker(120, clock=FakeClock())
    evaluator = ThresholdEvaluator(store, queue_repo, cooldowns, clock_ms=lambda: 42)

    assert evaluator.evaluate() == ["threshold_1_42", "threshold_2_43"]


def test_store_failure_skips_check(store, primary, fallback, tree):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold()}
    primary.failing = True
    fallback.failing = True
    queue = Mock()
    evaluator, _, _ = _evaluator(store, queue)

    assert evaluator.evaluate() == []
    queue.enqueue.assert_not_called()


def test_push_events_run_a_debounced_check(store, primary, tree, queue_repo):
    tree["kontrol_1"] = {"otomatis": True, "threshold_1": _threshold(smart_mode=False, pot_aktif=[1])}
    tree["data"] = {"soil_1": 70}
    evaluator, _, clock = _evaluator(store, queue_repo, cooldown=0, listener_min_gap=5)
    evaluator.evaluate = Mock(wraps=evaluator.evaluate)

    assert evaluator.start_listener() is True
    primary.push("put", {"soil_1": 10})
    primary.push("put", {"soil_1": 10})
    clock.advance(6)
    primary.push("put", {"soil_1": 10})

    assert evaluator.evaluate.call_count == 2
    evaluator.stop_listener()
    assert primary.listeners[0].closed is True


def test_read_moisture_rejects_non_numeric_values():
    sensors = {"soil_1": "33.5", "soil_2": True, "soil_3": None, "soil_4": float("nan")}

    assert read_moisture(sensors, 1) == 33.5
    assert read_moisture(sensors, 2) is None
    assert read_moisture(sensors, 3) is None
    assert read_moisture(sensors, 4) is None
    assert read_moisture(sensors, 5) is None
