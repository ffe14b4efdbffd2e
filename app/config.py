"""
Configuration for the Irrigation Dispatch Worker
================================================
Runtime settings for the store transports, evaluators, job queue and
executor, all loaded from environment variables.
Sets up the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from app.constants import (
    HistoryDefaults,
    Intervals,
    QueueRetention,
    StorePaths,
    Timeouts,
    TransportPolicyDefaults,
    WateringDefaults,
)
from app.domain.exceptions import ConfigurationError

REQUIRED_ENV_VARS = (
    "FIREBASE_PROJECT_ID",
    "FIREBASE_CLIENT_EMAIL",
    "FIREBASE_PRIVATE_KEY",
    "FIREBASE_DATABASE_URL",
)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


def _private_key() -> str:
    # Keys pasted into dashboards keep their newlines escaped.
    return os.getenv("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    # Firebase service account + database
    firebase_project_id: str = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID", ""))
    firebase_client_email: str = field(default_factory=lambda: os.getenv("FIREBASE_CLIENT_EMAIL", ""))
    firebase_private_key: str = field(default_factory=_private_key, repr=False)
    firebase_database_url: str = field(default_factory=lambda: os.getenv("FIREBASE_DATABASE_URL", "").rstrip("/"))

    timezone: str = field(default_factory=lambda: os.getenv("TZ", "Asia/Jakarta"))

    # Document-tree paths
    control_path: str = field(default_factory=lambda: os.getenv("IRRIGATION_CONTROL_PATH", StorePaths.CONTROL))
    actuator_path: str = field(default_factory=lambda: os.getenv("IRRIGATION_ACTUATOR_PATH", StorePaths.ACTUATOR))
    sensor_path: str = field(default_factory=lambda: os.getenv("IRRIGATION_SENSOR_PATH", StorePaths.SENSOR))
    history_path: str = field(default_factory=lambda: os.getenv("IRRIGATION_HISTORY_PATH", StorePaths.HISTORY))

    # Transports
    primary_timeout_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_PRIMARY_TIMEOUT", Timeouts.PRIMARY_TRANSPORT)
    )
    fallback_timeout_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_FALLBACK_TIMEOUT", Timeouts.FALLBACK_TRANSPORT)
    )
    primary_failure_threshold: int = field(
        default_factory=lambda: _env_int(
            "IRRIGATION_PRIMARY_FAILURE_THRESHOLD", TransportPolicyDefaults.FAILURE_THRESHOLD
        )
    )
    fallback_reset_after: int = field(
        default_factory=lambda: _env_int("IRRIGATION_FALLBACK_RESET_AFTER", TransportPolicyDefaults.RESET_AFTER_CALLS)
    )

    # Job queue
    queue_db_path: str = field(
        default_factory=lambda: os.getenv("IRRIGATION_QUEUE_DB_PATH", os.path.join("var", "watering_queue.db"))
    )
    keep_completed_jobs: int = field(
        default_factory=lambda: _env_int("IRRIGATION_KEEP_COMPLETED", QueueRetention.KEEP_COMPLETED)
    )
    keep_failed_jobs: int = field(default_factory=lambda: _env_int("IRRIGATION_KEEP_FAILED", QueueRetention.KEEP_FAILED))

    # Evaluators
    schedule_interval_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_SCHEDULE_INTERVAL", Intervals.SCHEDULE_CHECK)
    )
    threshold_interval_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_THRESHOLD_INTERVAL", Intervals.THRESHOLD_CHECK)
    )
    sensor_cooldown_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_SENSOR_COOLDOWN", WateringDefaults.SENSOR_COOLDOWN)
    )
    sensor_listener_enabled: bool = field(default_factory=lambda: _env_bool("IRRIGATION_SENSOR_LISTENER", True))

    # Executor
    smart_poll_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_SMART_POLL_INTERVAL", Intervals.SMART_SENSOR_POLL)
    )
    progress_interval_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_PROGRESS_INTERVAL", Intervals.FIXED_PROGRESS)
    )
    max_duration_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_MAX_DURATION", WateringDefaults.MAX_DURATION)
    )

    # History
    history_retention_days: int = field(
        default_factory=lambda: _env_int("IRRIGATION_HISTORY_RETENTION_DAYS", HistoryDefaults.RETENTION_DAYS)
    )
    history_autolog_interval_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_HISTORY_AUTOLOG_INTERVAL", Intervals.HISTORY_AUTOLOG)
    )
    history_cleanup_time: str = field(
        default_factory=lambda: os.getenv("IRRIGATION_HISTORY_CLEANUP_TIME", HistoryDefaults.CLEANUP_TIME)
    )

    health_interval_seconds: int = field(
        default_factory=lambda: _env_int("IRRIGATION_HEALTH_INTERVAL", Intervals.HEALTH_CHECK)
    )

    DEBUG: bool = field(default_factory=lambda: _env_bool("IRRIGATION_DEBUG", False))
    log_dir: str = field(default_factory=lambda: os.getenv("IRRIGATION_LOG_DIR", "logs"))

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset or empty."""
        values = {
            "FIREBASE_PROJECT_ID": self.firebase_project_id,
            "FIREBASE_CLIENT_EMAIL": self.firebase_client_email,
            "FIREBASE_PRIVATE_KEY": self.firebase_private_key,
            "FIREBASE_DATABASE_URL": self.firebase_database_url,
        }
        return [name for name in REQUIRED_ENV_VARS if not values[name]]

    def validate(self) -> None:
        """Fail fast on configuration the worker cannot start without."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                "Missing required environment variables: " + ", ".join(missing),
                detail={"missing": missing},
            )

        if self.primary_failure_threshold < 1 or self.fallback_reset_after < 1:
            raise ConfigurationError("Transport policy thresholds must be positive integers.")

        if self.schedule_interval_seconds > 60:
            # A longer poll can step over a whole minute and miss a schedule.
            raise ConfigurationError("IRRIGATION_SCHEDULE_INTERVAL must be 60 seconds or less.")

        try:
            hour, minute = (int(part) for part in self.history_cleanup_time.split(":"))
        except ValueError:
            raise ConfigurationError("IRRIGATION_HISTORY_CLEANUP_TIME must be HH:MM.") from None
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ConfigurationError("IRRIGATION_HISTORY_CLEANUP_TIME must be HH:MM.")

        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {self.timezone}") from None

    def firebase_credentials(self) -> dict[str, Any]:
        """Service-account mapping accepted by ``firebase_admin.credentials.Certificate``."""
        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "client_email": self.firebase_client_email,
            "private_key": self.firebase_private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }


def setup_logging(debug: bool = False, log_dir: str = "logs") -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicates when the CLI sets logging up more than once
    has_console = any(getattr(h, "name", "") == "irrigation_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "irrigation_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "irrigation_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "irrigation_worker.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "irrigation_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"irrigation_console", "irrigation_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info(f"Logging initialized at level: {logging.getLevelName(log_level)}")

    # The Firebase SDK and its HTTP stack log every retry at INFO/DEBUG
    for noisy in ("urllib3", "google", "firebase_admin", "cachecontrol"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    config = AppConfig()
    config.validate()
    return config
