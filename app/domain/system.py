"""
Worker Health Report
====================
Snapshot produced by the periodic self-check.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.enums import HealthLevel


@dataclass
class WorkerHealthReport:
    """Store reachability, queue state and transport statistics at one instant."""
    timestamp: datetime
    level: HealthLevel
    uptime_seconds: int
    store_reachable: bool
    queue_reachable: bool
    queue_counts: Dict[str, int] = field(default_factory=dict)
    transport: Dict[str, Any] = field(default_factory=dict)
    consumer_alive: Optional[bool] = None
    current_job: Optional[str] = None
    scheduler: Dict[str, Any] = field(default_factory=dict)
    issues: List[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return self.level is HealthLevel.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "uptime_seconds": self.uptime_seconds,
            "store_reachable": self.store_reachable,
            "queue_reachable": self.queue_reachable,
            "queue_counts": dict(self.queue_counts),
            "transport": dict(self.transport),
            "consumer_alive": self.consumer_alive,
            "current_job": self.current_job,
            "scheduler": dict(self.scheduler),
            "issues": list(self.issues),
        }
