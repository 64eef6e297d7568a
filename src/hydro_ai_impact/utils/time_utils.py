"""
Time Utilities
==============

Date handling for USGS daily values. USGS reports daily statistics as
calendar days; request windows and snapshot timestamps are kept in UTC.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple

import pytz


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.utc)


def parse_usgs_date(value) -> Optional[date]:
    """
    Parse a USGS ``time`` property into a calendar day.

    Accepts 'YYYY-MM-DD' as well as full ISO timestamps
    ('2024-01-15T00:00:00Z'); only the day part is kept.

    Returns:
        The calendar day, or None if parsing fails
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).split("T")[0], "%Y-%m-%d").date()
    except ValueError:
        return None


def date_window(days_back: int, end: Optional[date] = None) -> Tuple[str, str]:
    """ISO start/end strings for a look-back window ending today (UTC)."""
    end_date = end or utc_now().date()
    start_date = end_date - timedelta(days=days_back)
    return start_date.isoformat(), end_date.isoformat()


def days_between(earlier: date, later: date) -> int:
    """Whole days from ``earlier`` to ``later``."""
    return (later - earlier).days
