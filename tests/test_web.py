import pytest

from uc3m_ics import web
from uc3m_ics.errors import MissingDateRangeError, RetrievalError, ValidationError
from uc3m_ics.web import create_app

QUERY = "year=2022&plan=433&center=2&grade=4&group=121&period=1"


@pytest.fixture
def client(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def fetched(monkeypatch):
    calls = []

    def fake_fetch(timetable_id, settings, period=None):
        calls.append((timetable_id, period))
        return "BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n"

    monkeypatch.setattr(web, "fetch_calendar", fake_fetch)
    return calls


def failing(exc):
    def fake_fetch(timetable_id, settings, period=None):
        raise exc

    return fake_fetch


def test_calendar_download(client, fetched, timetable_id, settings):
    response = client.get(f"/?{QUERY}")

    assert response.status_code == 200
    assert response.mimetype == "text/calendar"
    assert response.get_data(as_text=True).startswith("BEGIN:VCALENDAR")
    assert response.headers["Content-Disposition"] == 'attachment; filename="uc3m-2022-433-2-4-121-1.ics"'
    assert response.headers["Cache-Control"] == f"public, max-age={settings.cache_max_age}"
    assert fetched == [(timetable_id, None)]


def test_calendar_with_period(client, fetched):
    response = client.get(f"/?{QUERY}&start=2022-09-05&end=2022-12-23")
    assert response.status_code == 200
    period = fetched[0][1]
    assert (period.start.isoformat(), period.end.isoformat()) == ("2022-09-05", "2022-12-23")


@pytest.mark.parametrize(
    "query, message",
    [
        (QUERY.replace("&grade=4", ""), "missing `grade` query parameter"),
        (QUERY.replace("plan=433", "plan=abc"), "invalid `plan` query parameter"),
        (QUERY + "&start=2022-09-05", "`start` and `end` must both be given"),
        (QUERY + "&start=2022-12-23&end=2022-09-05", "`start` and `end` must both be given"),
        (QUERY + "&start=yesterday&end=2022-09-05", "invalid `start` query parameter"),
    ],
)
def test_bad_parameters(client, fetched, query, message):
    response = client.get(f"/?{query}")
    assert response.status_code == 400
    assert message in response.get_data(as_text=True)
    assert fetched == []


@pytest.mark.parametrize(
    "exc, status, prefix",
    [
        (RetrievalError("connection refused"), 502, "the university site is unreachable"),
        (MissingDateRangeError("no dates"), 500, "cannot parse timetable"),
        (ValidationError("overlapping sessions"), 500, "cannot build calendar"),
    ],
)
def test_pipeline_errors(client, monkeypatch, exc, status, prefix):
    monkeypatch.setattr(web, "fetch_calendar", failing(exc))
    response = client.get(f"/?{QUERY}")
    assert response.status_code == status
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True).startswith(prefix)


def test_redirect_from_timetable_url(client, timetable_id):
    response = client.get("/from", query_string={"url": timetable_id.url()})
    assert response.status_code == 302
    location = response.headers["Location"]
    assert location.startswith("/?")
    for part in QUERY.split("&"):
        assert part in location


@pytest.mark.parametrize(
    "query, message",
    [
        ({}, "missing `url` query parameter"),
        ({"url": "https://www.uc3m.es/"}, "unknown timetable id: incorrect timetable domain"),
    ],
)
def test_redirect_rejects_bad_urls(client, query, message):
    response = client.get("/from", query_string=query)
    assert response.status_code == 400
    assert message in response.get_data(as_text=True)


def test_log_handler_is_added_once(settings):
    app = create_app(settings)
    names = [h.get_name() for h in app.logger.handlers]
    assert names.count(web.LOG_HANDLER_NAME) == 1


def test_build_failures_are_logged(client, monkeypatch, caplog):
    monkeypatch.setattr(web, "fetch_calendar", failing(ValidationError("overlapping sessions")))
    client.get(f"/?{QUERY}")
    assert "Cannot build calendar" in caplog.text
    assert "overlapping sessions" in caplog.text
