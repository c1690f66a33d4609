"""
Timezone-aware datetime utilities for the Revenue Intelligence Engine.

All functions return timezone-aware datetime objects in UTC unless they are
explicitly converting to a display timezone. SQLite hands back naive
datetimes, so anything read from the database goes through ensure_utc()
before arithmetic.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union
import pytz

SUPPORTED_PERIODS = ('day', 'week', 'month')


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float]) -> datetime:
    """
    Convert a Unix timestamp to a timezone-aware UTC datetime.

    Args:
        timestamp: Unix timestamp (seconds since epoch)

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC (that is how they are
    written by this application).

    Example:
        >>> naive_dt = datetime(2025, 1, 1, 12, 0, 0)
        >>> ensure_utc(naive_dt).tzinfo
        datetime.timezone.utc
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def seconds_between(start: datetime, end: datetime) -> float:
    """Signed number of seconds from start to end (negative if end is earlier)."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()


def utc_to_local(dt: datetime, local_tz: str = 'UTC') -> datetime:
    """
    Convert a UTC datetime to a local timezone.

    Args:
        dt: UTC datetime (naive values are treated as UTC)
        local_tz: Target timezone name

    Returns:
        datetime: Datetime in the specified local timezone
    """
    return ensure_utc(dt).astimezone(pytz.timezone(local_tz))


def utc_hours_ago(hours: int) -> datetime:
    """Get a UTC datetime for a specific number of hours ago."""
    return utc_now() - timedelta(hours=hours)


def period_key(dt: datetime, period: str = 'month', local_tz: str = 'UTC') -> str:
    """
    Bucket a datetime into a reporting period label.

    Periods are computed in the display timezone so that a payment made at
    23:30 local time lands on the local calendar day.

    Args:
        dt: Datetime to bucket
        period: One of 'day', 'week' (ISO week) or 'month'
        local_tz: Display timezone name

    Returns:
        str: '2025-01-31', '2025-W05' or '2025-01'

    Raises:
        ValueError: If the period is not supported
    """
    if period not in SUPPORTED_PERIODS:
        raise ValueError(f"Unsupported period '{period}'. Use one of: {', '.join(SUPPORTED_PERIODS)}")

    local_dt = utc_to_local(dt, local_tz)
    if period == 'day':
        return local_dt.strftime('%Y-%m-%d')
    if period == 'week':
        iso_year, iso_week, _ = local_dt.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return local_dt.strftime('%Y-%m')


def format_utc_iso(dt: Optional[datetime] = None) -> Optional[str]:
    """Format a datetime as an ISO string in UTC, or None when dt is None."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
