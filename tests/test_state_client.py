import pytest

from app.domain.exceptions import StoreUnavailableError
from app.enums import TransportMode
from app.schemas import ScheduleEntry
from infrastructure.store.state_client import StateClient, TransportPolicy

from conftest import FakeTransport


def test_read_uses_primary_when_healthy(store, primary, fallback, tree):
    tree["kontrol_1"] = {"waktu": True}

    assert store.read("kontrol_1") == {"waktu": True}
    assert [c[0] for c in primary.calls] == ["read"]
    assert fallback.calls == []
    assert store.stats()["primary_successes"] == 1


def test_primary_failure_falls_back_for_the_same_call(store, primary, fallback, tree):
    tree["data"] = {"soil_1": 42}
    primary.failing = True

    assert store.read("data") == {"soil_1": 42}
    stats = store.stats()
    assert stats["fallback_successes"] == 1
    assert stats["failure_streak"] == 1
    assert stats["mode"] == TransportMode.PRIMARY_PREFERRED.value


def test_three_primary_failures_force_fallback(store, primary, fallback):
    primary.failing = True
    for _ in range(3):
        store.read("kontrol_1")

    assert store.policy.mode is TransportMode.FALLBACK_FORCED
    primary_calls = len(primary.calls)

    store.read("kontrol_1")
    assert len(primary.calls) == primary_calls
    assert len(fallback.calls) == 4


def test_forced_mode_returns_to_primary_after_reset_window(primary, fallback):
    client = StateClient(primary, fallback, policy=TransportPolicy(failure_threshold=3, reset_after=50))
    primary.failing = True
    for _ in range(3):
        client.read("kontrol_1")
    primary.failing = False

    for _ in range(49):
        client.read("kontrol_1")
    assert client.policy.mode is TransportMode.FALLBACK_FORCED

    client.read("kontrol_1")
    assert client.policy.mode is TransportMode.PRIMARY_PREFERRED
    assert client.policy.snapshot()["failure_streak"] == 0

    before = len(primary.calls)
    client.read("kontrol_1")
    assert len(primary.calls) == before + 1


def test_primary_success_resets_failure_streak(store, primary):
    primary.failing = True
    store.read("kontrol_1")
    store.read("kontrol_1")
    primary.failing = False
    store.read("kontrol_1")
    primary.failing = True
    store.read("kontrol_1")

    assert store.policy.mode is TransportMode.PRIMARY_PREFERRED
    assert store.policy.snapshot()["failure_streak"] == 1


def test_both_transports_failing_raises_store_unavailable(store, primary, fallback):
    primary.failing = True
    fallback.failing = True

    with pytest.raises(StoreUnavailableError) as excinfo:
        store.update("aktuator", {"mosvet_1": True})

    assert excinfo.value.detail["path"] == "aktuator"
    assert excinfo.value.detail["operation"] == "update"
    assert store.stats()["failures"] == 1


def test_update_merges_and_set_replaces(store, tree):
    tree["aktuator"] = {"mosvet_1": False, "mosvet_8": True}

    store.update("aktuator", {"mosvet_1": True})
    assert tree["aktuator"] == {"mosvet_1": True, "mosvet_8": True}

    store.set("aktuator", {"mosvet_2": False})
    assert tree["aktuator"] == {"mosvet_2": False}


def test_schedule_entry_round_trip_through_both_transports(store, primary):
    wire = {
        "aktif": True,
        "waktu": "08:00",
        "durasi": 60,
        "pot_aktif": [1, 2, 3],
        "pompa_air": True,
        "pompa_pupuk": False,
    }
    store.set("kontrol_1/jadwal_1", wire)
    via_primary = ScheduleEntry.model_validate(store.read("kontrol_1/jadwal_1"))

    primary.failing = True
    via_fallback = ScheduleEntry.model_validate(store.read("kontrol_1/jadwal_1"))

    assert via_primary == via_fallback == ScheduleEntry.model_validate(wire)


def test_subscribe_uses_primary_listener(store, primary):
    events = []
    handle = store.subscribe("data", lambda event_type, data: events.append((event_type, data)))

    assert handle is not None
    primary.push("patch", {"soil_1": 10})
    assert events == [("patch", {"soil_1": 10})]
    assert store.stats()["listeners"] == 1


def test_subscribe_returns_none_without_push_support(tree):
    client = StateClient(FakeTransport("rest", tree, listenable=False), FakeTransport("rest2", tree))

    assert client.subscribe("data", lambda *_: None) is None


def test_subscribe_failure_is_not_fatal(store, primary):
    primary.failing = True

    assert store.subscribe("data", lambda *_: None) is None


def test_ping_reports_reachability(store, primary, fallback):
    assert store.ping() is True
    primary.failing = True
    fallback.failing = True
    assert store.ping() is False


def test_close_closes_listeners_and_transports(store, primary, fallback):
    handle = store.subscribe("data", lambda *_: None)
    store.close()
    store.close()

    assert handle.closed is True
    assert ("close", "", None) in primary.calls
    assert fallback.calls.count(("close", "", None)) == 1


def test_policy_rejects_non_positive_thresholds():
    with pytest.raises(ValueError):
        TransportPolicy(failure_threshold=0)
