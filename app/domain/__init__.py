"""
Domain Package
==============
Dataclasses and value objects describing watering jobs, schedule sources
and the in-memory trigger bookkeeping.
"""

from .trigger_state import CooldownTracker, TriggerLedger
from .watering_job import (
    MANUAL_TEST_TYPE,
    SENSOR_THRESHOLD_TYPE,
    TargetBounds,
    WateringJob,
    build_manual_job,
    legacy_job_id,
    manual_job_id,
    schedule_job_id,
    threshold_job_id,
)

__all__ = [
    # Jobs
    "WateringJob",
    "TargetBounds",
    "build_manual_job",
    "schedule_job_id",
    "legacy_job_id",
    "threshold_job_id",
    "manual_job_id",
    "MANUAL_TEST_TYPE",
    "SENSOR_THRESHOLD_TYPE",
    # Trigger bookkeeping
    "TriggerLedger",
    "CooldownTracker",
]
