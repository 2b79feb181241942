"""Parse a UC3M timetable publication page into :class:`ClassSession` records.

The page is a single ``table.timetable``. Its header names the day columns and
every body row starts with a ``.cabeceraHora`` time label. A course occupying
several rows is a ``td.celdaConSesion`` with a ``rowspan``; inside, each
``.asignaturaGrupo`` holds the course title followed by a ``.fechasSesion``
list of ``<span>dd.mmm-dd.mmm:</span><span>room</span>`` pairs.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, replace
from datetime import date, time
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup

from .config import MONTHS_ES, WEEKDAYS
from .errors import MalformedTableError, MissingDateRangeError, UnknownTimeFormatError
from .models import ClassSession, PeriodRange, SessionType, Weekday
from .utils import weekday_dates

TIME_LABEL_REGEX = re.compile(
    r"^(\d{1,2})(?:\s*[:.h]?\s*(\d{2}))?(?:\s*[-–]\s*(\d{1,2})(?:\s*[:.h]?\s*(\d{2}))?)?$"
)
DATE_RANGE_REGEX = re.compile(
    r"^(\d{1,2})\.\s*([a-zñ]{3})\.?(?:\s*[-–]\s*(\d{1,2})\.\s*([a-zñ]{3})\.?)?\s*:?$"
)
CODE_REGEX = re.compile(r"\(\s*(\d+)\s*\)")
GROUP_REGEX = re.compile(r"\b(?:grupo\s+|gr\.\s*)(\w+)", re.IGNORECASE)

SESSION_KEYWORDS = {
    "magistral": SessionType.LECTURE,
    "teoria": SessionType.LECTURE,
    "lecture": SessionType.LECTURE,
    "laboratorio": SessionType.LAB,
    "practicas": SessionType.LAB,
    "lab": SessionType.LAB,
    "reducido": SessionType.SEMINAR,
    "seminario": SessionType.SEMINAR,
    "seminar": SessionType.SEMINAR,
    "examen": SessionType.EXAM,
    "exam": SessionType.EXAM,
}

DEFAULT_DAYS = list(Weekday)


@dataclass(frozen=True)
class _Slot:
    course_code: str
    group_id: str
    subject_name: str
    session_type: SessionType
    weekday: Weekday
    start_time: time
    end_time: time
    first_date: date
    last_date: date
    location: Optional[str]


def _extract_text(node) -> str:
    return node.get_text(" ", strip=True) if node else ""


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def _classes(tag) -> List[str]:
    return tag.get("class") or []


def parse_time_label(label: str) -> Tuple[time, Optional[time]]:
    match = TIME_LABEL_REGEX.match(" ".join(label.split()))
    if not match:
        raise UnknownTimeFormatError(f"cannot read time slot label '{label}'")
    start_hour, start_minute, end_hour, end_minute = match.groups()
    try:
        start = time(int(start_hour), int(start_minute or 0))
        end = time(int(end_hour), int(end_minute or 0)) if end_hour else None
    except ValueError as exc:
        raise UnknownTimeFormatError(f"time slot label '{label}' is out of range") from exc
    if end is not None and end <= start:
        raise UnknownTimeFormatError(f"time slot label '{label}' ends before it starts")
    return start, end


def _add_minutes(start: time, minutes: int) -> time:
    total = start.hour * 60 + start.minute + minutes
    if total >= 24 * 60:
        raise MalformedTableError(f"session starting at {start:%H:%M} crosses midnight")
    return time(total // 60, total % 60)


def parse_date(text: str, year: int, start_month: int = 9) -> date:
    """Reads ``dd.mmm`` dates, placing months before ``start_month`` in the next year."""
    day_str, _, month_str = text.strip().partition(".")
    month = MONTHS_ES.get(_fold(month_str.strip(" .:")))
    if not month:
        raise MissingDateRangeError(f"unknown month in date '{text}'")
    try:
        return date(year if month >= start_month else year + 1, month, int(day_str))
    except ValueError as exc:
        raise MissingDateRangeError(f"invalid day in date '{text}'") from exc


def parse_date_range(text: str, year: int, start_month: int = 9) -> Tuple[date, date]:
    cleaned = _fold(" ".join(text.split()))
    match = DATE_RANGE_REGEX.match(cleaned)
    if not match:
        raise MissingDateRangeError(f"cannot read date range '{text}'")
    first_day, first_month, last_day, last_month = match.groups()
    first = parse_date(f"{first_day}.{first_month}", year, start_month)
    last = parse_date(f"{last_day}.{last_month}", year, start_month) if last_day else first
    if last < first:
        raise MissingDateRangeError(f"date range '{text}' ends before it starts")
    return first, last


def parse_title(title: str, default_group: str) -> Tuple[str, str, str, SessionType]:
    """Splits a course title into ``(course_code, group_id, subject_name, session_type)``."""
    rest = title
    code_match = CODE_REGEX.search(rest)
    if code_match:
        rest = rest[: code_match.start()] + " " + rest[code_match.end() :]
    group_match = GROUP_REGEX.search(rest)
    if group_match:
        rest = rest[: group_match.start()] + " " + rest[group_match.end() :]

    words = rest.split()
    folded = [_fold(w).strip("()[]-–.,:") for w in words]
    session_type = SessionType.OTHER
    if folded and folded[-1] in SESSION_KEYWORDS:
        session_type = SESSION_KEYWORDS[folded[-1]]
        words = words[:-1]
    else:
        for word in folded:
            if word in SESSION_KEYWORDS:
                session_type = SESSION_KEYWORDS[word]
                break

    subject = " ".join(words).strip(" -–·,:")
    code = code_match.group(1) if code_match else subject
    group = group_match.group(1) if group_match else default_group
    return code, group, subject, session_type


def _extract_days(table) -> List[Weekday]:
    headers = table.select("thead th") or table.select("thead td")
    days: List[Weekday] = []
    for header in headers:
        folded = _fold(_extract_text(header))[:3]
        if folded in WEEKDAYS:
            days.append(Weekday(WEEKDAYS[folded]))
    if headers and not days:
        logging.warning("Timetable header names no days, assuming Monday to Sunday")
    return days or DEFAULT_DAYS


def _extract_title(group_el) -> str:
    direct = " ".join(str(s) for s in group_el.find_all(string=True, recursive=False))
    title = " ".join(direct.split())
    if title:
        return title
    for child in group_el.find_all(True, recursive=False):
        if "fechasSesion" in _classes(child):
            continue
        text = _extract_text(child)
        if text:
            return text
    return ""


def _extract_session_dates(
    group_el, year: int, start_month: int
) -> List[Tuple[date, date, Optional[str]]]:
    sessions_el = group_el.select_one(".fechasSesion")
    if sessions_el is None:
        return []
    spans = sessions_el.find_all("span")
    ranges: List[Tuple[date, date, Optional[str]]] = []
    for i in range(0, len(spans), 2):
        first, last = parse_date_range(_extract_text(spans[i]), year, start_month)
        location = _extract_text(spans[i + 1]) if i + 1 < len(spans) else ""
        ranges.append((first, last, location or None))
    return ranges


def _rowspan(cell) -> int:
    raw = cell.get("rowspan", "1")
    try:
        span = int(raw)
    except ValueError as exc:
        raise MalformedTableError(f"invalid `rowspan` attribute value '{raw}'") from exc
    if span < 1:
        raise MalformedTableError(f"invalid `rowspan` attribute value '{raw}'")
    return span


def _parse_cell(
    cell,
    weekday: Weekday,
    start: time,
    end: time,
    period: Optional[PeriodRange],
    year: int,
    group_id: str,
    start_month: int,
) -> List[_Slot]:
    group_els = cell.select(".asignaturaGrupo")
    if not group_els:
        raise MalformedTableError("cannot find the subject group element of cell")

    slots: List[_Slot] = []
    for group_el in group_els:
        title = _extract_title(group_el)
        if not title:
            raise MalformedTableError("subject group element has no title")
        code, group, subject, session_type = parse_title(title, group_id)
        if not code:
            raise MalformedTableError(f"cannot find a course name in '{title}'")

        ranges = _extract_session_dates(group_el, year, start_month)
        if not ranges:
            if period is None:
                raise MissingDateRangeError(f"session of '{title}' has no date range and no period was given")
            ranges = [(period.start, period.end, None)]

        for first, last, location in ranges:
            if period is not None:
                first, last = max(first, period.start), min(last, period.end)
                if first > last:
                    logging.warning("Dropping '%s' session outside the period %s - %s", title, period.start, period.end)
                    continue
            if not weekday_dates(first, last, weekday.value):
                logging.warning(
                    "'%s' in the %s column has no %s between %s and %s",
                    title,
                    weekday.name.title(),
                    weekday.name.title(),
                    first,
                    last,
                )
            slots.append(
                _Slot(
                    course_code=code,
                    group_id=group,
                    subject_name=subject or code,
                    session_type=session_type,
                    weekday=weekday,
                    start_time=start,
                    end_time=end,
                    first_date=first,
                    last_date=last,
                    location=location,
                )
            )
    return slots


def extract_slots(
    content: Union[bytes, str],
    period: Optional[PeriodRange],
    year: int,
    group_id: str,
    slot_minutes: int = 15,
    start_month: int = 9,
) -> List[_Slot]:
    soup = BeautifulSoup(content, "lxml")
    table = soup.select_one("table.timetable")
    body = table.find("tbody") if table else None
    if body is None:
        raise MalformedTableError("cannot find the timetable `tbody` element")

    days = _extract_days(table)
    rows = [row for row in body.find_all("tr", recursive=False) if row.find(["td", "th"], recursive=False)]

    labels: List[Tuple[time, Optional[time]]] = []
    for index, row in enumerate(rows):
        time_el = row.find(["td", "th"], class_="cabeceraHora", recursive=False)
        if time_el is None:
            raise MalformedTableError(f"cannot find the time cell of timetable row {index + 1}")
        labels.append(parse_time_label(_extract_text(time_el)))

    slots: List[_Slot] = []
    occupied = set()
    for index, row in enumerate(rows):
        start = labels[index][0]
        column = 0
        for cell in row.find_all(["td", "th"], recursive=False):
            if "cabeceraHora" in _classes(cell):
                continue
            while (index, column) in occupied:
                column += 1
            span = _rowspan(cell)
            for covered in range(index + 1, index + span):
                occupied.add((covered, column))

            if "celdaConSesion" in _classes(cell):
                if column >= len(days):
                    raise MalformedTableError(f"session cell in column {column + 1} has no day header")
                last = index + span - 1
                if last < len(labels) and labels[last][1] is not None:
                    end = labels[last][1]
                else:
                    end = _add_minutes(start, span * slot_minutes)
                slots.extend(
                    _parse_cell(cell, days[column], start, end, period, year, group_id, start_month)
                )
            column += 1
    return slots


def merge_adjacent(slots: Sequence[_Slot]) -> List[_Slot]:
    """Joins back-to-back slots of the same course, group, day, date span and room."""

    def series(slot: _Slot):
        return (
            slot.group_id,
            slot.weekday.value,
            slot.course_code,
            slot.first_date,
            slot.last_date,
            slot.location or "",
        )

    merged: List[_Slot] = []
    for slot in sorted(slots, key=lambda s: series(s) + (s.start_time, s.end_time)):
        previous = merged[-1] if merged else None
        if previous and series(previous) == series(slot) and previous.end_time == slot.start_time:
            merged[-1] = replace(previous, end_time=slot.end_time)
        else:
            merged.append(slot)
    return merged


def consolidate(slots: Sequence[_Slot], holidays=frozenset()) -> List[ClassSession]:
    """Collapses consecutive date ranges of one slot into a session with excluded dates."""

    def slot_key(slot: _Slot):
        return (slot.group_id, slot.weekday.value, slot.course_code, slot.start_time, slot.end_time)

    def attrs(slot: _Slot):
        return (slot.subject_name, slot.session_type, slot.location)

    # a range with another room in between starts a new run
    runs: List[List[_Slot]] = []
    for slot in sorted(slots, key=lambda s: slot_key(s) + (s.first_date, s.last_date)):
        if runs and slot_key(runs[-1][0]) == slot_key(slot) and attrs(runs[-1][0]) == attrs(slot):
            runs[-1].append(slot)
        else:
            runs.append([slot])

    sessions: List[ClassSession] = []
    for run in runs:
        head = run[0]
        weekday = head.weekday.value
        first = min(s.first_date for s in run)
        last = max(s.last_date for s in run)
        covered = set()
        for slot in run:
            covered.update(weekday_dates(slot.first_date, slot.last_date, weekday))
        excluded = {d for d in weekday_dates(first, last, weekday) if d not in covered or d in holidays}
        sessions.append(
            ClassSession(
                course_code=head.course_code,
                group_id=head.group_id,
                subject_name=head.subject_name,
                session_type=head.session_type,
                weekday=head.weekday,
                start_time=head.start_time,
                end_time=head.end_time,
                first_date=first,
                last_date=last,
                location=head.location,
                excluded_dates=frozenset(excluded),
            )
        )
    sessions.sort(key=lambda s: (s.weekday.value, s.start_time, s.course_code, s.group_id, s.first_date))
    return sessions


def parse_timetable(
    content: Union[bytes, str],
    period: Optional[PeriodRange] = None,
    *,
    year: int,
    group_id: str,
    slot_minutes: int = 15,
    academic_year_start_month: int = 9,
    holidays: Iterable[date] = (),
) -> List[ClassSession]:
    slots = extract_slots(
        content,
        period,
        year,
        str(group_id),
        slot_minutes=slot_minutes,
        start_month=academic_year_start_month,
    )
    non_teaching = frozenset(holidays) | (period.holidays if period is not None else frozenset())
    sessions = consolidate(merge_adjacent(slots), non_teaching)
    logging.debug("Parsed %d slots into %d sessions", len(slots), len(sessions))
    return sessions
