"""Time helpers.

All instants stored or compared by the scheduler are naive datetimes
in UTC, matching what SQLite hands back from DateTime columns.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC (naive input is assumed UTC)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_to_utc(value: datetime, zone: ZoneInfo) -> datetime:
    """Interpret a naive wall-clock time in ``zone`` and return naive UTC."""
    return value.replace(tzinfo=zone).astimezone(timezone.utc).replace(tzinfo=None)


def utc_to_local(value: datetime, zone: ZoneInfo) -> datetime:
    """Convert naive UTC to an aware datetime in ``zone``."""
    return value.replace(tzinfo=timezone.utc).astimezone(zone)
