from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from icalendar import Calendar, Event

from .errors import InvalidFieldError
from .models import RecurringEvent
from .utils import combine

UTC = ZoneInfo("UTC")
ICAL_VERSION = "2.0"


def default_dtstamp(events: List[RecurringEvent]) -> datetime:
    """Midnight UTC of the earliest session date, so output never depends on the clock."""
    if not events:
        return datetime(1970, 1, 1, tzinfo=UTC)
    first = min(event.session.first_date for event in events)
    return datetime(first.year, first.month, first.day, tzinfo=UTC)


def _check_fields(event: RecurringEvent) -> None:
    session = event.session
    required = {
        "uid": event.uid,
        "summary": session.subject_name,
        "course_code": session.course_code,
        "group_id": session.group_id,
    }
    for name, value in required.items():
        if not value or not value.strip():
            raise InvalidFieldError(name, event.uid)


def _description(event: RecurringEvent) -> str:
    session = event.session
    return "\n".join(
        [
            f"Course: {session.course_code}",
            f"Group: {session.group_id}",
            f"Type: {session.session_type.value}",
        ]
    )


def to_vevent(event: RecurringEvent, tz: ZoneInfo, dtstamp: datetime) -> Event:
    session = event.session
    vevent = Event()
    vevent.add("uid", event.uid)
    vevent.add("dtstamp", dtstamp)
    vevent.add("dtstart", combine(event.anchor, session.start_time, tz))
    vevent.add("dtend", combine(event.anchor, session.end_time, tz))
    vevent.add("summary", event.summary)
    vevent.add("description", _description(event))
    vevent.add("categories", [session.session_type.value])
    if session.location:
        vevent.add("location", session.location)

    # UNTIL must be in UTC when DTSTART carries a TZID
    until = combine(event.rule.until, session.start_time, tz).astimezone(UTC)
    vevent.add("rrule", {"freq": event.rule.freq, "until": until, "byday": event.rule.byday.ical})
    for day in event.exdates:
        vevent.add("exdate", combine(day, session.start_time, tz))
    return vevent


def encode_calendar(
    events: Iterable[RecurringEvent],
    *,
    tz: ZoneInfo,
    product_id: str,
    dtstamp: Optional[datetime] = None,
    calendar_name: Optional[str] = None,
    embed_timezones: bool = True,
) -> str:
    """Serializes events, in the given order, into a complete iCalendar document."""
    events = list(events)
    for event in events:
        _check_fields(event)

    calendar = Calendar()
    calendar.add("prodid", product_id)
    calendar.add("version", ICAL_VERSION)
    calendar.add("calscale", "GREGORIAN")
    calendar.add("method", "PUBLISH")
    if calendar_name:
        calendar.add("x-wr-calname", calendar_name)
    calendar.add("x-wr-timezone", tz.key)

    stamp = dtstamp or default_dtstamp(events)
    for event in events:
        calendar.add_component(to_vevent(event, tz, stamp))
    if embed_timezones and events:
        calendar.add_missing_timezones()
    return calendar.to_ical().decode("utf-8")
