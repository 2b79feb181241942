from __future__ import annotations

import argparse
import logging
from datetime import date
from pathlib import Path

from uc3m_ics.config import get_settings
from uc3m_ics.errors import TimetableError, TimetableUrlError
from uc3m_ics.models import PeriodRange, TimetableId
from uc3m_ics.schedule import build_calendar, fetch_calendar

ID_FIELDS = ("year", "plan", "center", "grade", "group", "period")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export a UC3M group timetable as an iCalendar file")
    for name in ID_FIELDS:
        parser.add_argument(f"--{name}", type=int, help=f"Timetable {name}")
    parser.add_argument("--url", type=str, help="Published timetable URL instead of the six identifiers")
    parser.add_argument("--html", type=Path, help="Parse a saved timetable page instead of fetching it")
    parser.add_argument("--start", type=date.fromisoformat, help="Period start YYYY-MM-DD", default=None)
    parser.add_argument("--end", type=date.fromisoformat, help="Period end YYYY-MM-DD", default=None)
    parser.add_argument("-o", "--output", type=Path, help="Output .ics path (defaults to the suggested name)")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP endpoint instead")
    parser.add_argument("--port", type=int, default=8080, help="Port for --serve")
    return parser.parse_args(argv)


def timetable_id_from_args(args: argparse.Namespace) -> TimetableId:
    if args.url:
        return TimetableId.from_url(args.url)
    missing = [name for name in ID_FIELDS if getattr(args, name) is None]
    if missing:
        raise TimetableUrlError(f"missing --{', --'.join(missing)} (or pass --url)")
    return TimetableId(**{name: getattr(args, name) for name in ID_FIELDS})


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    settings = get_settings()

    if args.serve:
        from uc3m_ics.web import create_app

        create_app(settings).run(port=args.port)
        return 0

    try:
        timetable_id = timetable_id_from_args(args)
    except TimetableUrlError as exc:
        logging.error("%s", exc)
        return 2

    if bool(args.start) != bool(args.end):
        logging.error("--start and --end must be given together")
        return 2

    try:
        period = PeriodRange(args.start, args.end) if args.start else None
        if args.html:
            calendar = build_calendar(args.html.read_bytes(), timetable_id, settings, period)
        else:
            calendar = fetch_calendar(timetable_id, settings, period)
    except TimetableError as exc:
        logging.error("Cannot export %s: %s", timetable_id.url(), exc)
        return 1

    output = args.output or Path(timetable_id.filename())
    # newline="" keeps the CRLF line endings intact
    with open(output, "w", encoding="utf-8", newline="") as f:
        f.write(calendar)

    logging.info("Wrote %s", output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
