"""
Control Document Schemas
========================

Pydantic models for the entries of the control document shared with the
mobile app and the field controller. Field names on the wire follow the
deployed document format; the models expose English attribute names
through aliases.
"""

from collections.abc import Mapping
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from app.constants import ControlKeys, WateringDefaults
from app.domain.exceptions import ValidationError
from app.utils.time import parse_time_of_day


def coerce_pot_list(value: Any) -> List[int]:
    """
    Normalize a ``pot_aktif`` value to an ordered list of unique ints.

    The store turns sparse arrays into objects keyed by index, so both
    ``[1, 2]`` and ``{"0": 1, "1": 2}`` are accepted. Numeric strings are
    converted; anything else is rejected.
    """
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value[key] for key in sorted(value, key=lambda k: (len(str(k)), str(k)))]
    if not isinstance(value, (list, tuple)):
        raise ValueError("pot_aktif must be a list of pot numbers")

    pots: List[int] = []
    for item in value:
        if item is None:
            continue
        if isinstance(item, bool):
            raise ValueError(f"invalid pot number: {item!r}")
        try:
            pot = int(str(item).strip()) if isinstance(item, str) else int(item)
        except (TypeError, ValueError):
            raise ValueError(f"invalid pot number: {item!r}") from None
        if isinstance(item, float) and item != pot:
            raise ValueError(f"invalid pot number: {item!r}")
        if pot not in pots:
            pots.append(pot)
    return pots


def _or_default(value: Any, default: Any) -> Any:
    # Missing, null, zero and empty values fall back to the default
    if value is None or value == "" or value == 0 or value is False:
        return default
    return value


class ScheduleEntry(BaseModel):
    """A named time-of-day schedule (``jadwal_*``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    active: bool = Field(default=True, alias="aktif", description="Only an explicit false disables")
    time_of_day: Optional[str] = Field(default=None, alias="waktu", description="HH:MM local time")
    duration_seconds: int = Field(
        default=WateringDefaults.SCHEDULE_DURATION, alias="durasi", gt=0, description="Watering seconds"
    )
    active_pots: List[int] = Field(default_factory=list, alias="pot_aktif")
    pump_water: bool = Field(default=True, alias="pompa_air")
    pump_fertilizer: bool = Field(default=False, alias="pompa_pupuk")

    @field_validator("active", "pump_water", mode="before")
    @classmethod
    def _true_unless_false(cls, v):
        return v is not False

    @field_validator("pump_fertilizer", mode="before")
    @classmethod
    def _truthy(cls, v):
        return bool(v)

    @field_validator("time_of_day", mode="before")
    @classmethod
    def _normalize_time(cls, v):
        if v is None or v == "":
            return None
        normalized = parse_time_of_day(v)
        if normalized is None:
            raise ValueError(f"invalid time of day: {v!r}")
        return normalized

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _duration_default(cls, v):
        return _or_default(v, WateringDefaults.SCHEDULE_DURATION)

    @field_validator("active_pots", mode="before")
    @classmethod
    def _pots(cls, v):
        return coerce_pot_list(v)


class ThresholdEntry(BaseModel):
    """A soil-moisture threshold rule (``threshold_*``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    active: bool = Field(default=False, alias="aktif")
    lower_bound: float = Field(
        default=WateringDefaults.THRESHOLD_LOWER, alias="batas_bawah", ge=0, le=100, description="Percent"
    )
    upper_bound: float = Field(
        default=WateringDefaults.THRESHOLD_UPPER, alias="batas_atas", ge=0, le=100, description="Percent"
    )
    duration_seconds: int = Field(default=WateringDefaults.THRESHOLD_DURATION, alias="durasi", gt=0)
    smart_mode: bool = Field(default=False, alias="smart_mode")
    active_pots: List[int] = Field(default_factory=list, alias="pot_aktif")
    pump_water: bool = Field(default=False, alias="pompa_air")
    pump_fertilizer: bool = Field(default=False, alias="pompa_pupuk")

    @field_validator("active", mode="before")
    @classmethod
    def _truthy(cls, v):
        return bool(v)

    @field_validator("smart_mode", "pump_water", "pump_fertilizer", mode="before")
    @classmethod
    def _strict_true(cls, v):
        # Only a literal true switches these on
        return v is True

    @field_validator("lower_bound", mode="before")
    @classmethod
    def _lower_default(cls, v):
        return _or_default(v, WateringDefaults.THRESHOLD_LOWER)

    @field_validator("upper_bound", mode="before")
    @classmethod
    def _upper_default(cls, v):
        return _or_default(v, WateringDefaults.THRESHOLD_UPPER)

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _duration_default(cls, v):
        return _or_default(v, WateringDefaults.THRESHOLD_DURATION)

    @field_validator("active_pots", mode="before")
    @classmethod
    def _pots(cls, v):
        return coerce_pot_list(v)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.lower_bound >= self.upper_bound:
            raise ValueError(
                f"lower bound ({self.lower_bound}) must be below upper bound ({self.upper_bound})"
            )
        return self


class ControlFlags(BaseModel):
    """Global mode switches of the control document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    time_mode: bool = Field(default=False, alias=ControlKeys.TIME_MODE)
    sensor_mode: bool = Field(default=False, alias=ControlKeys.SENSOR_MODE)

    @field_validator("time_mode", "sensor_mode", mode="before")
    @classmethod
    def _truthy(cls, v):
        return bool(v)


EntryT = TypeVar("EntryT", bound=BaseModel)


def validate_entry(model: Type[EntryT], name: str, raw: Any) -> EntryT:
    """
    Validate one ``jadwal_*`` / ``threshold_*`` entry of the control document.

    Raises:
        ValidationError: the entry is not an object or fails the model;
            ``detail`` carries the entry name and the individual errors.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("entry is not an object", detail={"entry": name})
    try:
        return model.model_validate(dict(raw))
    except PydanticValidationError as exc:
        errors = [err["msg"] for err in exc.errors()]
        raise ValidationError("; ".join(errors), detail={"entry": name, "errors": errors}) from exc
