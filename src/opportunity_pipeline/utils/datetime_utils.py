from __future__ import annotations

import calendar
import math
import time
from datetime import date, datetime, timezone
from typing import Any

from dateutil import parser


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime_utc(value: Any) -> datetime | None:
    if value is None:
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, time.struct_time):
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds, as partner APIs and JS clients send them.
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            return to_utc(parser.parse(value))
        except (ValueError, TypeError, OverflowError):
            return None

    return None


def format_datetime(value: datetime | None) -> str:
    if value is None:
        return "unknown"
    return to_utc(value).strftime("%Y-%m-%d %H:%M UTC")


def hours_since(value: datetime | None, now: datetime) -> float:
    """Hours elapsed since ``value``; infinite when it never happened."""
    if value is None:
        return math.inf
    return (to_utc(now) - to_utc(value)).total_seconds() / 3600


def days_between(start: datetime, end: datetime) -> float:
    return (to_utc(end) - to_utc(start)).total_seconds() / 86400


def same_calendar_day(first: datetime | None, second: datetime | None) -> bool:
    if first is None or second is None:
        return False
    return to_utc(first).date() == to_utc(second).date()
