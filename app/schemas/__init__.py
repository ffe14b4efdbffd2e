"""
Schemas Module
==============

This module provides Pydantic models for validating documents read from
the shared store. Schemas ensure data integrity before a trigger is built.
"""

from app.schemas.control import ControlFlags, ScheduleEntry, ThresholdEntry, coerce_pot_list, validate_entry

__all__ = [
    "ControlFlags",
    "ScheduleEntry",
    "ThresholdEntry",
    "coerce_pot_list",
    "validate_entry",
]
