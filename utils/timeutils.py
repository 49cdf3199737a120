"""Time helpers shared by repositories and services."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config.constants import BUSINESS_TIMEZONE


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage (ISO-8601, UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db(value) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def business_date(value: datetime) -> str:
    """Return the business-calendar date (YYYY-MM-DD) for a timestamp."""
    return value.astimezone(ZoneInfo(BUSINESS_TIMEZONE)).date().isoformat()


def seconds_until(deadline: datetime, now: datetime) -> float:
    """Seconds from now until deadline, never negative."""
    return max(0.0, (deadline - now).total_seconds())


def add_seconds(value: datetime, seconds: float) -> datetime:
    return value + timedelta(seconds=seconds)
