"""
Actuator Channel Plan
=====================
Maps a watering job onto the physical channels of the actuator node.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from app.constants import Channels
from app.domain.watering_job import WateringJob


@dataclass(frozen=True)
class ChannelPlan:
    """Channels a job switches on, in write order (pumps first, then valves)."""

    channels: Tuple[str, ...]

    @classmethod
    def for_job(cls, job: WateringJob) -> "ChannelPlan":
        channels: List[str] = []
        if job.pump_water:
            channels.append(Channels.PUMP_WATER)
        if job.pump_fertilizer:
            channels.append(Channels.PUMP_FERTILIZER)
        for pot in job.valid_pots:
            channel = Channels.for_pot(pot)
            if channel not in channels:
                channels.append(channel)
        return cls(tuple(channels))

    def on_payload(self) -> Dict[str, bool]:
        return {channel: True for channel in self.channels}

    def off_payload(self) -> Dict[str, bool]:
        return {channel: False for channel in self.channels}

    def __bool__(self) -> bool:
        return bool(self.channels)


def safety_off_payload() -> Dict[str, bool]:
    """Every known channel off, stirrer included."""
    return {channel: False for channel in Channels.ALL}
