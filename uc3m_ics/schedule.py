from __future__ import annotations

import logging
from typing import Optional, Union

import requests

from .config import Settings
from .errors import RetrievalError
from .ical import encode_calendar
from .models import PeriodRange, TimetableId, validate_sessions
from .parser import parse_timetable
from .recurrence import resolve_all


def fetch_timetable_html(timetable_id: TimetableId, *, timeout: float) -> bytes:
    url = timetable_id.url()
    logging.info("Fetching timetable %s", url)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logging.error("Failed to fetch timetable %s: %s", url, exc)
        raise RetrievalError(f"cannot fetch {url}: {exc}") from exc
    return response.content


def build_calendar(
    content: Union[bytes, str],
    timetable_id: TimetableId,
    settings: Settings,
    period: Optional[PeriodRange] = None,
) -> str:
    sessions = parse_timetable(
        content,
        period,
        year=timetable_id.year,
        group_id=str(timetable_id.group),
        slot_minutes=settings.slot_minutes,
        academic_year_start_month=settings.academic_year_start_month,
        holidays=settings.holidays,
    )
    logging.info("Parsed %d sessions for %s", len(sessions), timetable_id.filename())
    validate_sessions(sessions)

    events = resolve_all(sessions, uid_domain=settings.uid_domain)
    return encode_calendar(
        events,
        tz=settings.timezone,
        product_id=settings.product_id,
        calendar_name=f"UC3M {timetable_id.year} group {timetable_id.group}",
    )


def fetch_calendar(
    timetable_id: TimetableId,
    settings: Settings,
    period: Optional[PeriodRange] = None,
) -> str:
    content = fetch_timetable_html(timetable_id, timeout=settings.request_timeout)
    return build_calendar(content, timetable_id, settings, period)
