"""
Actuator Domain Models

Channel mapping for the actuator node.
"""

from .channel_plan import ChannelPlan, safety_off_payload

__all__ = [
    "ChannelPlan",
    "safety_off_payload",
]
