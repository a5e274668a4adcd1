"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Union


def as_datetime(value: Union[date, datetime]) -> datetime:
    """Promote a date to midnight UTC; naive datetimes are taken as UTC"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def add_days(from_date: date, days: int) -> date:
    """Add calendar days to a date (net terms count weekends and holidays)"""
    return from_date + timedelta(days=days)


def days_between(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Whole days elapsed from start to end, floored; negative if end is earlier"""
    delta = as_datetime(end) - as_datetime(start)
    return delta.days


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
