from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from typing import FrozenSet
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

DEFAULT_TIMEZONE = "Europe/Madrid"


@dataclass(frozen=True)
class Settings:
    timezone: ZoneInfo
    request_timeout: float = 10.0
    slot_minutes: int = 15
    uid_domain: str = "uc3m-timetable.hugmanrique.me"
    product_id: str = "-//uc3m-ics//Timetable Export//ES"
    holidays: FrozenSet[date] = field(default_factory=frozenset)
    academic_year_start_month: int = 9
    cache_max_age: int = 3600


MONTHS_ES = {
    "ene": 1,
    "feb": 2,
    "mar": 3,
    "abr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "ago": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dic": 12,
}

# Three-letter, accent-free prefixes of the day names used in column headers.
WEEKDAYS = {
    "lun": 0,
    "mar": 1,
    "mie": 2,
    "jue": 3,
    "vie": 4,
    "sab": 5,
    "dom": 6,
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}


def get_timezone() -> ZoneInfo:
    tz_name = os.getenv("TIMEZONE", DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.warning("Invalid TIMEZONE %s, falling back to %s", tz_name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def _get_number(name: str, default, cast=int):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        logging.warning("Invalid %s %r, using %s", name, raw, default)
        return default
    if value <= 0:
        logging.warning("%s must be positive, got %r; using %s", name, raw, default)
        return default
    return value


def parse_holidays(raw: str) -> FrozenSet[date]:
    holidays = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            holidays.add(date.fromisoformat(part))
        except ValueError:
            logging.warning("Ignoring invalid holiday date %r", part)
    return frozenset(holidays)


def get_settings() -> Settings:
    start_month = _get_number("ACADEMIC_YEAR_START_MONTH", 9)
    if start_month > 12:
        logging.warning("ACADEMIC_YEAR_START_MONTH must be 1-12, got %d; using 9", start_month)
        start_month = 9
    return Settings(
        timezone=get_timezone(),
        request_timeout=_get_number("REQUEST_TIMEOUT", 10.0, cast=float),
        slot_minutes=_get_number("SLOT_MINUTES", 15),
        uid_domain=os.getenv("UID_DOMAIN") or Settings.uid_domain,
        product_id=os.getenv("PRODUCT_ID") or Settings.product_id,
        holidays=parse_holidays(os.getenv("HOLIDAYS", "")),
        academic_year_start_month=start_month,
        cache_max_age=_get_number("CACHE_MAX_AGE", 3600),
    )
