from datetime import date, time
from zoneinfo import ZoneInfo

import pytest

from uc3m_ics.config import Settings
from uc3m_ics.models import ClassSession, SessionType, TimetableId, Weekday

MADRID = ZoneInfo("Europe/Madrid")
DAYS_ES = ("Lunes", "Martes", "Miércoles", "Jueves", "Viernes")


def cell(title, *ranges, rowspan=1):
    """A session cell; ``ranges`` are ``(date_range, room)`` pairs."""
    dates = "".join(f"<span>{span}:</span><span>{room}</span><br/>" for span, room in ranges)
    fechas = f'<div class="fechasSesion">{dates}</div>' if ranges else ""
    return (
        f'<td class="celdaConSesion" rowspan="{rowspan}">'
        f'<div class="asignaturaGrupo">{title}{fechas}</div></td>'
    )


def timetable_html(rows, days=DAYS_ES):
    """``rows`` are ``(label, [cells])`` tuples; a ``None`` cell is an empty slot."""
    header = "".join(f"<th>{day}</th>" for day in days)
    body = []
    for label, cells in rows:
        tds = "".join(c if c is not None else "<td></td>" for c in cells)
        body.append(f'<tr><td class="cabeceraHora">{label}</td>{tds}</tr>')
    return (
        "<html><body><table class=\"timetable\">"
        f"<thead><tr><th></th>{header}</tr></thead>"
        f"<tbody>{''.join(body)}</tbody></table></body></html>"
    )


@pytest.fixture
def make_cell():
    return cell


@pytest.fixture
def make_timetable():
    return timetable_html


@pytest.fixture
def sample_html():
    rows = [
        (
            "09:00 - 10:00",
            [
                cell("Cálculo I (13976) Gr. 121 Magistral", ("12.sep-12.dic", "2.3.A01"), rowspan=2),
                None,
                cell(
                    "Programación (13977) Reducido",
                    ("14.sep-12.oct", "4.0.E02"),
                    ("26.oct-14.dic", "4.0.E02"),
                ),
            ],
        ),
        ("10:00 - 11:00", [cell("Física (13978) Laboratorio", ("20.sep", "1.0.L01")), None]),
        ("11:00 - 12:00", [None, None, None]),
    ]
    return timetable_html(rows).encode("utf-8")


@pytest.fixture
def timetable_id():
    return TimetableId(year=2022, plan=433, center=2, grade=4, group=121, period=1)


@pytest.fixture
def settings():
    return Settings(timezone=MADRID)


@pytest.fixture
def make_session():
    def factory(**overrides):
        values = dict(
            course_code="13976",
            group_id="121",
            subject_name="Cálculo I",
            session_type=SessionType.LECTURE,
            weekday=Weekday.MONDAY,
            start_time=time(9, 0),
            end_time=time(11, 0),
            first_date=date(2022, 9, 12),
            last_date=date(2022, 12, 12),
            location="2.3.A01",
        )
        values.update(overrides)
        return ClassSession(**values)

    return factory
