"""
Schedule Domain Module
======================

Time-of-day schedule sources read from the control document.

This module provides:
- NamedSchedule: a ``jadwal_*`` entry with its own pots and pumps
- LegacySlot: the two-slot format that waters every pot
- collect_schedule_sources: parses both variants in one pass
"""
from app.domain.schedules.schedule_source import (
    LegacySlot,
    NamedSchedule,
    ScheduleSource,
    collect_schedule_sources,
)

__all__ = [
    "LegacySlot",
    "NamedSchedule",
    "ScheduleSource",
    "collect_schedule_sources",
]
