"""
Watering Job Domain Objects
===========================
The unit of work passed from the evaluators through the durable queue to
the executor.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.constants import WateringDefaults
from app.enums import JobSource
from app.utils.time import coerce_datetime, utc_now

MANUAL_TEST_TYPE = "manual_test"
SENSOR_THRESHOLD_TYPE = "sensor_threshold"


def _time_suffix(time_key: str) -> str:
    return time_key.replace(":", "_")


def schedule_job_id(name: str, date_key: str, time_key: str) -> str:
    """``jadwal_1_2025-01-31_08_00``"""
    return f"{name}_{date_key}_{_time_suffix(time_key)}"


def legacy_job_id(slot: int, date_key: str, time_key: str) -> str:
    """``legacy_jadwal_1_2025-01-31_08_00``"""
    return f"legacy_jadwal_{slot}_{date_key}_{_time_suffix(time_key)}"


def threshold_job_id(name: str, epoch_ms: int) -> str:
    return f"{name}_{epoch_ms}"


def manual_job_id(epoch_ms: int) -> str:
    return f"manual_{epoch_ms}"


@dataclass(frozen=True)
class TargetBounds:
    """Moisture window a threshold job waters towards."""
    lower: float
    upper: float

    def to_dict(self) -> Dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}


@dataclass
class WateringJob:
    """A single watering run.

    ``job_id`` is deterministic per trigger instance so that enqueueing the
    same trigger twice is a no-op. ``history_type`` is the ``type`` written
    into the history record once the run finishes.
    """
    job_id: str
    source: JobSource
    pots: List[int]
    duration_seconds: int
    history_type: str
    pump_water: bool = True
    pump_fertilizer: bool = False
    smart_mode: bool = False
    target_bounds: Optional[TargetBounds] = None
    trigger_name: str = ""
    created_at: datetime = field(default_factory=utc_now)
    sensor_context: Dict[str, Any] = field(default_factory=dict)

    @property
    def priority(self) -> int:
        return self.source.priority

    @property
    def valid_pots(self) -> List[int]:
        """Pots that map to a physical valve."""
        return [
            pot for pot in self.pots
            if WateringDefaults.POT_MIN <= pot <= WateringDefaults.POT_MAX
        ]

    @property
    def is_smart(self) -> bool:
        return self.smart_mode and self.target_bounds is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "job_id": self.job_id,
            "source": self.source.value,
            "pots": list(self.pots),
            "duration_seconds": self.duration_seconds,
            "history_type": self.history_type,
            "pump_water": self.pump_water,
            "pump_fertilizer": self.pump_fertilizer,
            "smart_mode": self.smart_mode,
            "target_bounds": self.target_bounds.to_dict() if self.target_bounds else None,
            "trigger_name": self.trigger_name,
            "created_at": self.created_at.isoformat(),
            "sensor_context": dict(self.sensor_context),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WateringJob":
        bounds = data.get("target_bounds")
        return cls(
            job_id=str(data["job_id"]),
            source=JobSource(data["source"]),
            pots=[int(p) for p in data.get("pots") or []],
            duration_seconds=int(data["duration_seconds"]),
            history_type=str(data.get("history_type") or ""),
            pump_water=bool(data.get("pump_water", True)),
            pump_fertilizer=bool(data.get("pump_fertilizer", False)),
            smart_mode=bool(data.get("smart_mode", False)),
            target_bounds=TargetBounds(float(bounds["lower"]), float(bounds["upper"])) if bounds else None,
            trigger_name=str(data.get("trigger_name") or ""),
            created_at=coerce_datetime(data.get("created_at")) or utc_now(),
            sensor_context=dict(data.get("sensor_context") or {}),
        )

    def describe(self) -> str:
        mode = "smart" if self.is_smart else "fixed"
        return (
            f"{self.job_id} [{self.source}] pots={self.pots} "
            f"{self.duration_seconds}s {mode}"
        )


def build_manual_job(
    pots: List[int],
    duration_seconds: int,
    *,
    epoch_ms: int,
    pump_water: bool = True,
    pump_fertilizer: bool = False,
) -> WateringJob:
    """Hardware-verification job enqueued from the command line."""
    return WateringJob(
        job_id=manual_job_id(epoch_ms),
        source=JobSource.MANUAL,
        pots=list(pots),
        duration_seconds=int(duration_seconds),
        history_type=MANUAL_TEST_TYPE,
        pump_water=pump_water,
        pump_fertilizer=pump_fertilizer,
        trigger_name="manual",
    )
