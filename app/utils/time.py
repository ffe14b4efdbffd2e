"""Utility functions for time handling.

Internal timestamps are UTC and timezone-aware. The store's schedule and
history keys are expressed in the site's local timezone, so the helpers
below convert an aware instant into those ``YYYY-MM-DD`` / ``HH:MM`` keys.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def iso_now(*, timespec: str | None = None) -> str:
    """Return current UTC time as an ISO8601 string (timezone-aware)."""
    now = utc_now()
    if timespec:
        return now.isoformat(timespec=timespec)
    return now.isoformat()


def epoch_millis(dt: datetime | None = None) -> int:
    """Milliseconds since the Unix epoch for ``dt`` (default: now)."""
    dt = dt or utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


@lru_cache(maxsize=8)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert an aware (or naive UTC) datetime to ``tz_name``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(get_zone(tz_name))


def local_date_key(dt: datetime, tz_name: str) -> str:
    """``YYYY-MM-DD`` in the site timezone."""
    return to_local(dt, tz_name).strftime("%Y-%m-%d")


def local_time_key(dt: datetime, tz_name: str) -> str:
    """``HH:MM`` in the site timezone."""
    return to_local(dt, tz_name).strftime("%H:%M")


def parse_time_of_day(value: Any) -> str | None:
    """
    Normalize a time-of-day string to zero-padded ``HH:MM``.

    Accepts ``"8:00"`` as well as ``"08:00"``; returns None for anything
    that is not a valid 24h clock time.
    """
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return f"{hour:02d}:{minute:02d}"


def parse_date_key(value: str) -> date | None:
    """Parse a ``YYYY-MM-DD`` key, returning None when it is not a date."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def retention_cutoff(now: datetime, tz_name: str, days: int) -> date:
    """Oldest local date that is still kept by a ``days`` retention window."""
    return to_local(now, tz_name).date() - timedelta(days=days)


def coerce_datetime(value: Any) -> datetime | None:
    """
    Coerce value to datetime, returning None on failure.

    Args:
        value: String or datetime to coerce

    Returns:
        Datetime in timezone.utc or None if invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    else:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed
