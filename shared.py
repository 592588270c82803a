# shared.py
"""
Shared calendar helpers - prevents circular imports between the analytics modules.

This module contains:
- Timezone configuration
- Datetime parsing/normalization for observation timestamps
- Calendar keys (year, month, day of week, hour) used by buckets and cascades

Day of week is numbered 1 = Sunday ... 7 = Saturday everywhere.
"""
from datetime import datetime
from typing import Any, Optional, Tuple
import pytz

from config import BRIDGE_TIMEZONE

TIMEZONE = pytz.timezone(BRIDGE_TIMEZONE)

WEEKEND_DAYS = (1, 7)


def parse_datetime(dt: Any) -> Optional[datetime]:
    """
    Parse datetime from various formats (datetime object, ISO string).

    Naive datetimes are treated as local bridge time.

    Args:
        dt: Datetime object or ISO format string

    Returns:
        Timezone-aware datetime, or None if parsing fails
    """
    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            return TIMEZONE.localize(dt)
        return dt.astimezone(TIMEZONE)

    if isinstance(dt, str):
        try:
            # Handle Z suffix and various timezone formats
            clean_str = dt.replace('Z', '+00:00')
            parsed = datetime.fromisoformat(clean_str)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return TIMEZONE.localize(parsed)
        return parsed.astimezone(TIMEZONE)

    return None


def now() -> datetime:
    return datetime.now(TIMEZONE)


def day_of_week(dt: datetime) -> int:
    """Weekday of dt in bridge time, 1 = Sunday ... 7 = Saturday."""
    return parse_datetime(dt).isoweekday() % 7 + 1


def calendar_key(dt: datetime) -> Tuple[int, int, int, int]:
    """(year, month, day_of_week, hour) of dt in bridge time."""
    local = parse_datetime(dt)
    return local.year, local.month, local.isoweekday() % 7 + 1, local.hour


def is_weekend(dow: int) -> bool:
    return dow in WEEKEND_DAYS


def is_rush_hour(dow: int, hour: int) -> bool:
    # 7-9 AM and 4-6 PM on weekdays
    return not is_weekend(dow) and (7 <= hour <= 9 or 16 <= hour <= 18)


def is_summer(month: int) -> bool:
    return 5 <= month <= 9


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def format_hour(hour: int) -> str:
    """24h hour -> '9 AM' style label."""
    if hour == 0:
        return "12 AM"
    if hour < 12:
        return f"{hour} AM"
    if hour == 12:
        return "12 PM"
    return f"{hour - 12} PM"


WEEKDAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def weekday_name(dow: int) -> str:
    return WEEKDAY_NAMES[dow - 1]


def resolve_time(current_time: Optional[datetime] = None) -> datetime:
    """Injected current time in bridge time, or now."""
    if current_time is None:
        return now()
    return parse_datetime(current_time)
