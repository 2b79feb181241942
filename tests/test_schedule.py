from datetime import date

import pytest
import requests
from icalendar import Calendar

from uc3m_ics import schedule
from uc3m_ics.errors import MalformedTableError, RetrievalError, ValidationError
from uc3m_ics.models import PeriodRange
from uc3m_ics.schedule import build_calendar, fetch_calendar, fetch_timetable_html


class FakeResponse:
    def __init__(self, content=b"", status=200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


def test_build_calendar(sample_html, timetable_id, settings):
    text = build_calendar(sample_html, timetable_id, settings)
    calendar = Calendar.from_ical(text)

    assert str(calendar["X-WR-CALNAME"]) == "UC3M 2022 group 121"
    summaries = [str(v["SUMMARY"]) for v in calendar.walk("VEVENT")]
    assert summaries == ["Cálculo I", "Física (Lab)", "Programación (Seminar)"]
    assert "RRULE:FREQ=WEEKLY;UNTIL=20221212T080000Z;BYDAY=MO" in text
    assert build_calendar(sample_html, timetable_id, settings) == text


def test_build_calendar_honours_period(sample_html, timetable_id, settings):
    period = PeriodRange(date(2022, 9, 21), date(2022, 11, 30))
    calendar = Calendar.from_ical(build_calendar(sample_html, timetable_id, settings, period))
    assert len(calendar.walk("VEVENT")) == 2


def test_overlapping_sessions_are_rejected(make_timetable, make_cell, timetable_id, settings):
    two_courses = (
        '<td class="celdaConSesion">'
        '<div class="asignaturaGrupo">Álgebra (14000)'
        '<div class="fechasSesion"><span>12.sep-12.dic:</span><span>1.1</span></div></div>'
        '<div class="asignaturaGrupo">Grafos (14001)'
        '<div class="fechasSesion"><span>12.sep-12.dic:</span><span>1.2</span></div></div>'
        "</td>"
    )
    content = make_timetable([("09:00 - 10:00", [two_courses])])
    with pytest.raises(ValidationError) as info:
        build_calendar(content, timetable_id, settings)
    assert len(info.value.conflicts) == 1


def test_alternating_week_courses_share_a_slot(make_timetable, timetable_id, settings):
    def course(title, *days):
        spans = "".join(f"<span>{day}:</span><span>1.0.L01</span>" for day in days)
        return f'<div class="asignaturaGrupo">{title}<div class="fechasSesion">{spans}</div></div>'

    cell = (
        '<td class="celdaConSesion">'
        + course("Física (14000) Laboratorio", "12.sep", "26.sep", "10.oct")
        + course("Química (14001) Laboratorio", "19.sep", "3.oct")
        + "</td>"
    )
    text = build_calendar(make_timetable([("09:00 - 10:00", [cell])]), timetable_id, settings)

    vevents = Calendar.from_ical(text).walk("VEVENT")
    assert [str(v["SUMMARY"]) for v in vevents] == ["Física (Lab)", "Química (Lab)"]


def test_fetch_uses_timeout(monkeypatch, sample_html, timetable_id, settings):
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return FakeResponse(sample_html)

    monkeypatch.setattr(schedule.requests, "get", fake_get)
    text = fetch_calendar(timetable_id, settings)

    assert calls == [(timetable_id.url(), settings.request_timeout)]
    assert text == build_calendar(sample_html, timetable_id, settings)


def test_http_error_is_retrieval_error(monkeypatch, timetable_id):
    monkeypatch.setattr(schedule.requests, "get", lambda url, timeout: FakeResponse(status=503))
    with pytest.raises(RetrievalError, match="503"):
        fetch_timetable_html(timetable_id, timeout=1)


def test_timeout_is_retrieval_error(monkeypatch, timetable_id):
    def fake_get(url, timeout):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(schedule.requests, "get", fake_get)
    with pytest.raises(RetrievalError, match="timed out"):
        fetch_timetable_html(timetable_id, timeout=1)


def test_unexpected_page_is_parse_error(monkeypatch, timetable_id, settings):
    page = b"<html><body>Mantenimiento</body></html>"
    monkeypatch.setattr(schedule.requests, "get", lambda url, timeout: FakeResponse(page))
    with pytest.raises(MalformedTableError):
        fetch_calendar(timetable_id, settings)
