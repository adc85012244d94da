"""
Timezone utilities for the booking engine.

All timestamps are stored in UTC. The salon's business timezone decides
which local day a booking belongs to when computing the daily queue.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple

import pytz

from .config import settings


def get_business_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Return the configured business timezone as a pytz timezone."""
    return pytz.timezone(name or settings.business_timezone)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive values are assumed to already be UTC (SQLite returns naive
    datetimes for timezone-aware columns).
    """
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def business_today(tz_name: Optional[str] = None) -> date:
    """Get 'today' in the salon's timezone."""
    return datetime.now(get_business_timezone(tz_name)).date()


def local_date(dt: datetime, tz_name: Optional[str] = None) -> date:
    """Return the business-local calendar date of a stored timestamp."""
    return ensure_utc(dt).astimezone(get_business_timezone(tz_name)).date()


def local_day_bounds(day: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    Return the UTC ``[start, end)`` bounds of a business-local day.

    Args:
        day: Local calendar date
        tz_name: Optional timezone override

    Returns:
        Tuple of timezone-aware UTC datetimes
    """
    tz = get_business_timezone(tz_name)
    start_local = tz.localize(datetime(day.year, day.month, day.day))
    end_local = tz.localize(datetime(day.year, day.month, day.day) + timedelta(days=1))
    return start_local.astimezone(pytz.UTC), end_local.astimezone(pytz.UTC)
