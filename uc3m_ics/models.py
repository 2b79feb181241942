from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from itertools import groupby
from typing import FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlsplit

from dateutil.rrule import WEEKLY, rrule, rruleset

from .errors import TimetableUrlError, ValidationError
from .utils import combine, weekday_dates

UC3M_TIMETABLE_DOMAIN = "aplicaciones.uc3m.es"


class Weekday(Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def ical(self) -> str:
        return self.name[:2]

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls(day.weekday())


class SessionType(Enum):
    LECTURE = "lecture"
    LAB = "lab"
    SEMINAR = "seminar"
    EXAM = "exam"
    OTHER = "other"

    @property
    def label(self) -> Optional[str]:
        return SESSION_LABELS.get(self)


SESSION_LABELS = {
    SessionType.LAB: "Lab",
    SessionType.SEMINAR: "Seminar",
    SessionType.EXAM: "Exam",
}


@dataclass(frozen=True)
class PeriodRange:
    """Teaching dates of an academic period; they bound every session."""

    start: date
    end: date
    holidays: FrozenSet[date] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(f"period starts on {self.start} after it ends on {self.end}")
        object.__setattr__(self, "holidays", frozenset(self.holidays))


@dataclass(frozen=True)
class ClassSession:
    course_code: str
    group_id: str
    subject_name: str
    session_type: SessionType
    weekday: Weekday
    start_time: time
    end_time: time
    first_date: date
    last_date: date
    location: Optional[str] = None
    excluded_dates: FrozenSet[date] = field(default_factory=frozenset)

    def __post_init__(self):
        for name in ("course_code", "group_id", "subject_name"):
            if not getattr(self, name).strip():
                raise ValidationError(f"session field `{name}` must not be empty")
        if self.start_time >= self.end_time:
            raise ValidationError(
                f"{self.course_code}: start time {self.start_time} is not before end time {self.end_time}"
            )
        if self.first_date > self.last_date:
            raise ValidationError(
                f"{self.course_code}: first date {self.first_date} is after last date {self.last_date}"
            )
        excluded = frozenset(self.excluded_dates)
        for day in excluded:
            if day.weekday() != self.weekday.value or not self.first_date <= day <= self.last_date:
                raise ValidationError(
                    f"{self.course_code}: excluded date {day} is not a {self.weekday.name.title()} "
                    f"between {self.first_date} and {self.last_date}"
                )
        object.__setattr__(self, "excluded_dates", excluded)
        location = self.location.strip() if self.location else None
        object.__setattr__(self, "location", location or None)

    @property
    def summary(self) -> str:
        label = self.session_type.label
        return f"{self.subject_name} ({label})" if label else self.subject_name

    def meeting_dates(self) -> FrozenSet[date]:
        days = weekday_dates(self.first_date, self.last_date, self.weekday.value)
        return frozenset(days) - self.excluded_dates

    def overlaps(self, other: "ClassSession") -> bool:
        # alternating-week courses share a span but never a date
        return (
            self.group_id == other.group_id
            and self.weekday == other.weekday
            and self.start_time < other.end_time
            and other.start_time < self.end_time
            and self.first_date <= other.last_date
            and other.first_date <= self.last_date
            and not self.meeting_dates().isdisjoint(other.meeting_dates())
        )


def find_overlaps(sessions: Iterable[ClassSession]) -> List[Tuple[ClassSession, ClassSession]]:
    ordered = sorted(sessions, key=lambda s: (s.group_id, s.weekday.value, s.start_time, s.end_time))
    conflicts: List[Tuple[ClassSession, ClassSession]] = []
    for _, bucket in groupby(ordered, key=lambda s: (s.group_id, s.weekday)):
        bucket = list(bucket)
        for i, current in enumerate(bucket):
            for later in bucket[i + 1 :]:
                # sorted by start, nothing further down can overlap
                if later.start_time >= current.end_time:
                    break
                if current.overlaps(later):
                    conflicts.append((current, later))
    return conflicts


def validate_sessions(sessions: Iterable[ClassSession]) -> None:
    conflicts = find_overlaps(sessions)
    if conflicts:
        details = "; ".join(
            f"{a.course_code} {a.start_time:%H:%M}-{a.end_time:%H:%M} and "
            f"{b.course_code} {b.start_time:%H:%M}-{b.end_time:%H:%M} "
            f"(group {a.group_id}, {a.weekday.name.title()})"
            for a, b in conflicts
        )
        raise ValidationError(f"overlapping sessions: {details}", conflicts)


@dataclass(frozen=True)
class RecurrenceRule:
    byday: Weekday
    until: date
    freq: str = "WEEKLY"


@dataclass(frozen=True)
class RecurringEvent:
    session: ClassSession
    uid: str
    anchor: date
    rule: RecurrenceRule
    exdates: Tuple[date, ...] = ()

    @property
    def summary(self) -> str:
        return self.session.summary

    def occurrences(self) -> List[date]:
        start = combine(self.anchor, self.session.start_time)
        rules = rruleset()
        rules.rrule(
            rrule(
                WEEKLY,
                dtstart=start,
                until=combine(self.rule.until, self.session.start_time),
                byweekday=self.rule.byday.value,
            )
        )
        for day in self.exdates:
            rules.exdate(combine(day, self.session.start_time))
        return [occurrence.date() for occurrence in rules]


@dataclass(frozen=True)
class TimetableId:
    year: int
    plan: int
    center: int
    grade: int
    group: int
    period: int

    def url(self) -> str:
        params = urlencode(
            [
                ("plan", self.plan),
                ("centro", self.center),
                ("curso", self.grade),
                ("grupo", self.group),
                ("tipoPer", "C"),
                ("valorPer", self.period),
            ]
        )
        return (
            f"https://{UC3M_TIMETABLE_DOMAIN}/horarios-web/publicacion/{self.year}"
            f"/porCentroPlanCursoGrupo.tt?{params}"
        )

    def filename(self) -> str:
        return f"uc3m-{self.year}-{self.plan}-{self.center}-{self.grade}-{self.group}-{self.period}.ics"

    def query(self) -> dict:
        return {
            "year": self.year,
            "plan": self.plan,
            "center": self.center,
            "grade": self.grade,
            "group": self.group,
            "period": self.period,
        }

    @classmethod
    def from_url(cls, url: str) -> "TimetableId":
        parts = urlsplit(url)
        if not parts.hostname:
            raise TimetableUrlError("url is missing domain")
        if parts.hostname != UC3M_TIMETABLE_DOMAIN:
            raise TimetableUrlError("incorrect timetable domain")

        segments = [s for s in parts.path.split("/") if s]
        if len(segments) < 3:
            raise TimetableUrlError("url is missing year segment")
        try:
            year = int(segments[2])
        except ValueError as exc:
            raise TimetableUrlError("cannot parse non-numeric year segment") from exc

        query = parse_qs(parts.query)

        def param(name: str) -> int:
            values = query.get(name)
            if not values:
                raise TimetableUrlError(f"missing query param `{name}`")
            try:
                return int(values[0])
            except ValueError as exc:
                raise TimetableUrlError(f"invalid query param `{name}`") from exc

        return cls(
            year=year,
            plan=param("plan"),
            center=param("centro"),
            grade=param("curso"),
            group=param("grupo"),
            period=param("valorPer"),
        )
