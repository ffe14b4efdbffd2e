"""
Schedule Sources
================

The control document carries two kinds of time-of-day triggers:

- named schedules (``jadwal_*`` entries with their own pots and pumps)
- the two legacy slots (``waktu_1``/``durasi_1``, ``waktu_2``/``durasi_2``)
  that water every pot with both pumps on

Both are parsed into :class:`ScheduleSource` variants and evaluated in a
single pass. Each variant owns its job-id namespace and history type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple, Union

from app.constants import ControlKeys, WateringDefaults
from app.domain.exceptions import ValidationError
from app.domain.watering_job import WateringJob, legacy_job_id, schedule_job_id
from app.enums import JobSource
from app.schemas.control import ScheduleEntry, validate_entry
from app.utils.time import parse_time_of_day


@dataclass(frozen=True)
class NamedSchedule:
    name: str
    entry: ScheduleEntry

    kind = "named"

    @property
    def active(self) -> bool:
        return self.entry.active

    @property
    def time_of_day(self) -> str | None:
        return self.entry.time_of_day

    @property
    def pots(self) -> List[int]:
        return list(self.entry.active_pots)

    def job_id(self, date_key: str, time_key: str) -> str:
        return schedule_job_id(self.name, date_key, time_key)

    @property
    def history_type(self) -> str:
        return f"waktu_{self.name}"

    def build_job(self, date_key: str, time_key: str) -> WateringJob:
        return WateringJob(
            job_id=self.job_id(date_key, time_key),
            source=JobSource.SCHEDULED,
            pots=self.pots,
            duration_seconds=self.entry.duration_seconds,
            history_type=self.history_type,
            pump_water=self.entry.pump_water,
            pump_fertilizer=self.entry.pump_fertilizer,
            trigger_name=self.name,
        )


@dataclass(frozen=True)
class LegacySlot:
    slot: int
    time_of_day: str
    duration_seconds: int = WateringDefaults.LEGACY_DURATION

    kind = "legacy"
    active = True

    @property
    def name(self) -> str:
        return f"jadwal_{self.slot}"

    @property
    def pots(self) -> List[int]:
        return list(WateringDefaults.ALL_POTS)

    def job_id(self, date_key: str, time_key: str) -> str:
        return legacy_job_id(self.slot, date_key, time_key)

    @property
    def history_type(self) -> str:
        return f"waktu_jadwal_{self.slot}"

    def build_job(self, date_key: str, time_key: str) -> WateringJob:
        return WateringJob(
            job_id=self.job_id(date_key, time_key),
            source=JobSource.SCHEDULED,
            pots=self.pots,
            duration_seconds=self.duration_seconds,
            history_type=self.history_type,
            pump_water=True,
            pump_fertilizer=True,
            trigger_name=f"legacy_{self.name}",
        )


ScheduleSource = Union[NamedSchedule, LegacySlot]


def _legacy_duration(value: Any) -> int:
    try:
        duration = int(value)
    except (TypeError, ValueError):
        return WateringDefaults.LEGACY_DURATION
    return duration if duration > 0 else WateringDefaults.LEGACY_DURATION


def collect_schedule_sources(
    control: Mapping[str, Any],
) -> Tuple[List[ScheduleSource], Dict[str, str]]:
    """
    Parse every schedule source out of a control document.

    Returns:
        ``(sources, invalid)`` where ``invalid`` maps entry name to the
        reason it was rejected. Named schedules come first in key order,
        then the legacy slots.
    """
    sources: List[ScheduleSource] = []
    invalid: Dict[str, str] = {}

    for key in sorted(k for k in control if str(k).startswith(ControlKeys.SCHEDULE_PREFIX)):
        try:
            entry = validate_entry(ScheduleEntry, key, control[key])
        except ValidationError as exc:
            invalid[key] = str(exc)
            continue
        sources.append(NamedSchedule(name=key, entry=entry))

    for slot, time_key, duration_key in ControlKeys.LEGACY_SLOTS:
        raw_time = control.get(time_key)
        if not raw_time:
            continue
        normalized = parse_time_of_day(raw_time)
        if normalized is None:
            invalid[time_key] = f"invalid time of day: {raw_time!r}"
            continue
        sources.append(
            LegacySlot(slot=slot, time_of_day=normalized, duration_seconds=_legacy_duration(control.get(duration_key)))
        )

    return sources, invalid
