from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from flask import Blueprint, Flask, Response, current_app, redirect, request, url_for

from .config import Settings, get_settings
from .errors import ParseError, RetrievalError, TimetableError, TimetableUrlError
from .models import PeriodRange, TimetableId
from .schedule import fetch_calendar

bp = Blueprint("timetable", __name__)

ID_PARAMS = ("year", "plan", "center", "grade", "group", "period")
LOG_HANDLER_NAME = "uc3m_ics"


class BadRequest(Exception):
    pass


def _int_param(name: str) -> int:
    raw = request.args.get(name)
    if raw is None or not raw.strip():
        raise BadRequest(f"missing `{name}` query parameter")
    try:
        return int(raw)
    except ValueError:
        raise BadRequest(f"invalid `{name}` query parameter") from None


def _date_param(name: str) -> Optional[date]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise BadRequest(f"invalid `{name}` query parameter") from None


def _period_param() -> Optional[PeriodRange]:
    start, end = _date_param("start"), _date_param("end")
    if start is None and end is None:
        return None
    if start is None or end is None or start > end:
        raise BadRequest("`start` and `end` must both be given, with `start` before `end`")
    return PeriodRange(start, end)


def _error(message: str, status: int) -> Response:
    return Response(message, status=status, mimetype="text/plain")


@bp.route("/")
def calendar():
    try:
        timetable_id = TimetableId(**{name: _int_param(name) for name in ID_PARAMS})
        period = _period_param()
    except BadRequest as exc:
        return _error(str(exc), 400)

    settings: Settings = current_app.config["TIMETABLE_SETTINGS"]
    logging.info("Calendar request for %s", timetable_id.filename())
    try:
        body = fetch_calendar(timetable_id, settings, period)
    except RetrievalError as exc:
        return _error(f"the university site is unreachable: {exc}", 502)
    except ParseError as exc:
        logging.error("Cannot parse timetable %s: %s", timetable_id.url(), exc)
        return _error(f"cannot parse timetable: {exc}", 500)
    except TimetableError as exc:
        logging.error("Cannot build calendar for %s: %s", timetable_id.url(), exc)
        return _error(f"cannot build calendar: {exc}", 500)

    response = Response(body, mimetype="text/calendar")
    response.headers["Content-Disposition"] = f'attachment; filename="{timetable_id.filename()}"'
    response.headers["Cache-Control"] = f"public, max-age={settings.cache_max_age}"
    return response


@bp.route("/from")
def from_url():
    url = request.args.get("url")
    if not url:
        return _error("missing `url` query parameter", 400)
    try:
        timetable_id = TimetableId.from_url(url)
    except TimetableUrlError as exc:
        return _error(f"unknown timetable id: {exc}", 400)
    return redirect(url_for("timetable.calendar", **timetable_id.query()))


def create_app(settings: Optional[Settings] = None) -> Flask:
    app = Flask(__name__)
    app.config["TIMETABLE_SETTINGS"] = settings or get_settings()

    if not app.debug and not any(h.get_name() == LOG_HANDLER_NAME for h in app.logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(LOG_HANDLER_NAME)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        handler.setLevel(logging.INFO)
        app.logger.addHandler(handler)
        app.logger.setLevel(logging.INFO)

    app.register_blueprint(bp)
    return app
