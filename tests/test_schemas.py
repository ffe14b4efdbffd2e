import pytest
from pydantic import ValidationError

from app.domain.exceptions import ValidationError as EntryValidationError
from app.domain.schedules import collect_schedule_sources
from app.schemas import ControlFlags, ScheduleEntry, ThresholdEntry, coerce_pot_list, validate_entry


@pytest.mark.parametrize(
    "raw, expected",
    [
        ([1, 2, 3], [1, 2, 3]),
        (["2", " 4 "], [2, 4]),
        ({"0": 3, "1": 1}, [3, 1]),
        ({"1": 2, "10": 5, "2": 4}, [2, 4, 5]),
        ([1, 1, None, 2], [1, 2]),
        (None, []),
    ],
)
def test_pot_lists_are_normalized(raw, expected):
    assert coerce_pot_list(raw) == expected


@pytest.mark.parametrize("raw", ["1,2", [True], ["pot1"], [1.5]])
def test_malformed_pot_lists_are_rejected(raw):
    with pytest.raises(ValueError):
        coerce_pot_list(raw)


def test_schedule_entry_defaults():
    entry = ScheduleEntry.model_validate({"waktu": "7:05"})

    assert entry.active is True
    assert entry.time_of_day == "07:05"
    assert entry.duration_seconds == 60
    assert entry.pump_water is True
    assert entry.pump_fertilizer is False
    assert entry.active_pots == []


def test_schedule_entry_only_explicit_false_disables():
    assert ScheduleEntry.model_validate({"aktif": None}).active is True
    assert ScheduleEntry.model_validate({"aktif": False}).active is False
    assert ScheduleEntry.model_validate({"pompa_air": False}).pump_water is False


def test_schedule_entry_rejects_bad_time():
    with pytest.raises(ValidationError):
        ScheduleEntry.model_validate({"waktu": "8 am"})


def test_threshold_entry_defaults_and_strict_flags():
    entry = ThresholdEntry.model_validate({"aktif": 1, "smart_mode": "true", "pompa_air": True})

    assert entry.active is True
    assert entry.lower_bound == 30
    assert entry.upper_bound == 70
    assert entry.duration_seconds == 600
    assert entry.smart_mode is False
    assert entry.pump_water is True


def test_threshold_bounds_must_be_ordered():
    with pytest.raises(ValidationError):
        ThresholdEntry.model_validate({"batas_bawah": 60, "batas_atas": 60})


def test_threshold_bounds_must_be_percentages():
    with pytest.raises(ValidationError):
        ThresholdEntry.model_validate({"batas_bawah": 20, "batas_atas": 120})


def test_control_flags():
    flags = ControlFlags.model_validate({"waktu": 1, "otomatis": None, "jadwal_1": {}})

    assert flags.time_mode is True
    assert flags.sensor_mode is False


def test_validate_entry_reports_entry_name_and_errors():
    with pytest.raises(EntryValidationError) as excinfo:
        validate_entry(ThresholdEntry, "threshold_1", {"batas_bawah": 60, "batas_atas": 40})

    assert excinfo.value.detail["entry"] == "threshold_1"
    assert excinfo.value.detail["errors"]


def test_validate_entry_rejects_non_objects():
    with pytest.raises(EntryValidationError, match="not an object"):
        validate_entry(ScheduleEntry, "jadwal_4", "garbage")


def test_invalid_schedule_entries_are_collected_by_name():
    sources, invalid = collect_schedule_sources(
        {
            "jadwal_1": "garbage",
            "jadwal_2": {"waktu": "8 am"},
            "jadwal_3": {"waktu": "08:00", "pot_aktif": [1]},
        }
    )

    assert [source.name for source in sources] == ["jadwal_3"]
    assert invalid["jadwal_1"] == "entry is not an object"
    assert "jadwal_2" in invalid
