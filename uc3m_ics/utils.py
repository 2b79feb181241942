from __future__ import annotations

import hashlib
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List, Optional


def combine(day: date, at: time, tz: Optional[tzinfo] = None) -> datetime:
    return datetime(day.year, day.month, day.day, at.hour, at.minute, at.second, tzinfo=tz)


def hash_source(parts: Iterable[str]) -> str:
    hasher = hashlib.sha1()
    joined = "|".join(parts)
    hasher.update(joined.encode("utf-8"))
    return hasher.hexdigest()


def next_weekday(day: date, weekday: int) -> date:
    """First date on or after ``day`` falling on ``weekday`` (Monday is 0)."""
    return day + timedelta(days=(weekday - day.weekday()) % 7)


def weekday_dates(first: date, last: date, weekday: int) -> List[date]:
    dates: List[date] = []
    current = next_weekday(first, weekday)
    while current <= last:
        dates.append(current)
        current += timedelta(days=7)
    return dates
