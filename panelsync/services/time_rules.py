"""
Time rules shared by the device and the server.
All timestamps are stored as naive UTC and compared as aware UTC.
"""
from datetime import datetime, timedelta
from typing import Optional
import pytz
from ..config import settings


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive values are assumed to already be UTC (that is how SQLite hands them back).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def to_storage(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to the naive UTC form written to the database."""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def fresh_window(hours: Optional[float] = None) -> timedelta:
    if hours is None:
        hours = settings.fresh_hours
    return timedelta(hours=hours)


def is_fresh(covered_at: datetime, now: datetime, window: Optional[timedelta] = None) -> bool:
    """
    Check if a coverage is still up to date.

    Args:
        covered_at: When the panel was covered
        now: Reference time
        window: Freshness window (default from settings)

    Returns:
        True if now - covered_at is strictly below the window
    """
    if window is None:
        window = fresh_window()
    return ensure_utc(now) - ensure_utc(covered_at) < window


def start_of_local_day(now: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Midnight of the day containing `now` in the given timezone, returned as aware UTC.

    Args:
        now: Reference time (UTC, timezone-aware or naive)
        timezone_str: Timezone string (default from settings)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    local_now = ensure_utc(now).astimezone(tz)
    midnight = tz.localize(datetime(local_now.year, local_now.month, local_now.day))
    return midnight.astimezone(pytz.UTC)
