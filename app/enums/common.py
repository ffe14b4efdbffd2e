"""
Common Enumerations
====================

Enums shared by the evaluators, the job queue, the executor and the
health check.
"""

from enum import Enum


class JobSource(str, Enum):
    """
    What created a watering job.
    Used by: evaluators, job queue priority, history record type
    """
    SCHEDULED = "scheduled"
    THRESHOLD = "threshold"
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value

    @property
    def priority(self) -> int:
        """Queue priority; higher values are claimed first."""
        return _SOURCE_PRIORITY[self]


_SOURCE_PRIORITY = {
    JobSource.SCHEDULED: 0,
    JobSource.THRESHOLD: 5,
    JobSource.MANUAL: 10,
}


class JobStatus(str, Enum):
    """
    Lifecycle of a queued watering job.
    Used by: job queue repository, queue consumer, check-queue CLI
    """
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class TransportMode(str, Enum):
    """
    State of the dual-transport fallback policy.
    Used by: state client, health check
    """
    PRIMARY_PREFERRED = "primary_preferred"
    FALLBACK_FORCED = "fallback_forced"

    def __str__(self) -> str:
        return self.value


class HealthLevel(str, Enum):
    """
    Worker health levels reported by the periodic self-check.
    """
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    def __str__(self) -> str:
        return self.value
