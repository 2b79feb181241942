from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, List

from .models import ClassSession, RecurrenceRule, RecurringEvent
from .utils import hash_source, next_weekday


def base_key(session: ClassSession) -> str:
    return "|".join(
        [
            session.course_code,
            session.group_id,
            session.weekday.ical,
            session.start_time.strftime("%H:%M"),
        ]
    )


def make_uid(key: str, uid_domain: str) -> str:
    return f"{hash_source([key])}@{uid_domain}"


def resolve(session: ClassSession, *, uid_domain: str, key: str = "") -> RecurringEvent:
    """Turns a session into a weekly event anchored on its first occurrence."""
    anchor = next_weekday(session.first_date, session.weekday.value)
    exdates = set(session.excluded_dates)
    if anchor > session.last_date:
        # DTSTART always counts as an occurrence, so it has to be excluded explicitly
        exdates.add(anchor)

    event = RecurringEvent(
        session=session,
        uid=make_uid(key or base_key(session), uid_domain),
        anchor=anchor,
        rule=RecurrenceRule(byday=session.weekday, until=session.last_date),
        exdates=tuple(sorted(exdates)),
    )
    if not event.occurrences():
        logging.warning(
            "%s (%s) on %s has no occurrences between %s and %s",
            session.subject_name,
            session.group_id,
            session.weekday.name.title(),
            session.first_date,
            session.last_date,
        )
    return event


def resolve_all(sessions: Iterable[ClassSession], *, uid_domain: str) -> List[RecurringEvent]:
    events: List[RecurringEvent] = []
    key_counts: dict[str, int] = defaultdict(int)
    for session in sessions:
        key = base_key(session)
        key_counts[key] += 1
        suffix = "" if key_counts[key] == 1 else f"|#{key_counts[key] - 1}"
        events.append(resolve(session, uid_domain=uid_domain, key=key + suffix))
    return events
