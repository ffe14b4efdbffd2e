"""
Enums Module
============

Enumeration types for the irrigation worker.
Enums ensure type safety and consistency across the codebase.
"""

from app.enums.common import HealthLevel, JobSource, JobStatus, TransportMode

__all__ = [
    "HealthLevel",
    "JobSource",
    "JobStatus",
    "TransportMode",
]
