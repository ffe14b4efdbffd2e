"""
Application Constants
=====================

Centralized constants for store wire names, actuator channel mapping and
timing defaults.

Usage:
    from app.constants import Channels, ControlKeys, Intervals
"""

# =============================================================================
# Timing Constants (seconds unless otherwise noted)
# =============================================================================

class Timeouts:
    """Timeout values for store transports."""
    PRIMARY_TRANSPORT = 5.0  # realtime SDK call
    FALLBACK_TRANSPORT = 8.0  # REST call


class Intervals:
    """Polling and scheduling intervals."""
    SCHEDULE_CHECK = 60
    SCHEDULE_FIRST_RUN_DELAY = 8
    SCHEDULE_CATCHUP_MINUTES = 5  # missed minutes re-checked after a late or failed poll
    THRESHOLD_CHECK = 30
    THRESHOLD_FIRST_RUN_DELAY = 10
    HEALTH_CHECK = 300
    HEALTH_FIRST_RUN_DELAY = 5
    HEARTBEAT = 30
    HISTORY_AUTOLOG = 600
    DIAGNOSTICS_DELAY = 5

    SMART_SENSOR_POLL = 5  # executor sensor check during smart mode
    FIXED_PROGRESS = 10  # executor progress log during fixed mode
    QUEUE_IDLE_POLL = 1.0
    LISTENER_MIN_GAP = 5  # push-triggered threshold checks closer than this are dropped


class TransportPolicyDefaults:
    """Adaptive primary/fallback switching."""
    FAILURE_THRESHOLD = 3  # consecutive primary failures before forcing fallback
    RESET_AFTER_CALLS = 50  # forced fallback calls before retrying primary


# =============================================================================
# Watering Defaults
# =============================================================================

class WateringDefaults:
    """Defaults applied when a store entry omits a field."""
    SCHEDULE_DURATION = 60
    LEGACY_DURATION = 60
    THRESHOLD_DURATION = 600
    THRESHOLD_LOWER = 30
    THRESHOLD_UPPER = 70
    SENSOR_COOLDOWN = 120  # seconds between watering starts per pot
    MAX_DURATION = 900  # hard cap for any single job

    POT_MIN = 1
    POT_MAX = 5
    ALL_POTS = (1, 2, 3, 4, 5)


class QueueRetention:
    """Bounded history of finished jobs."""
    KEEP_COMPLETED = 100
    KEEP_FAILED = 50


class HistoryDefaults:
    RETENTION_DAYS = 30
    CLEANUP_TIME = "02:00"
    AUTO_LOG_TYPE = "auto_log"


# =============================================================================
# Store Wire Names
# =============================================================================

class StorePaths:
    """Default document-tree paths (overridable through AppConfig)."""
    CONTROL = "kontrol_1"
    ACTUATOR = "aktuator"
    SENSOR = "data"
    HISTORY = "history"


class ControlKeys:
    """Keys of the control document."""
    TIME_MODE = "waktu"
    SENSOR_MODE = "otomatis"
    SCHEDULE_PREFIX = "jadwal_"
    THRESHOLD_PREFIX = "threshold_"
    LEGACY_SLOTS = ((1, "waktu_1", "durasi_1"), (2, "waktu_2", "durasi_2"))


class Channels:
    """Physical actuator channels.

    ``mosvet_1`` water pump, ``mosvet_2`` fertilizer pump, ``mosvet_3`` ..
    ``mosvet_7`` valves for pots 1..5, ``mosvet_8`` stirrer.
    """
    PUMP_WATER = "mosvet_1"
    PUMP_FERTILIZER = "mosvet_2"
    STIRRER = "mosvet_8"
    POT_CHANNEL_OFFSET = 2

    ALL = tuple(f"mosvet_{i}" for i in range(1, 9))

    @classmethod
    def for_pot(cls, pot: int) -> str:
        return f"mosvet_{int(pot) + cls.POT_CHANNEL_OFFSET}"


def soil_key(pot: int) -> str:
    """Sensor document key for a pot's moisture reading."""
    return f"soil_{int(pot)}"
