"""Command-line interface: sunrise/sunset and moonrise/moonset for one day."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date, datetime
from typing import List, Optional, Sequence

from .astro import (
    DEFAULT_UTC_OFFSET_HOURS,
    Body,
    CalculationError,
    EventKind,
    EventResult,
    SunMoonCalculator,
)
from .tables import TableError, read_tables, resolve_table_source, update_leap_seconds

LOGGER = logging.getLogger(__name__)

_LABELS = {
    (Body.sun, EventKind.rise): "Sunrise",
    (Body.sun, EventKind.transit): "Sun transit",
    (Body.sun, EventKind.set): "Sunset",
    (Body.moon, EventKind.rise): "Moonrise",
    (Body.moon, EventKind.transit): "Moon transit",
    (Body.moon, EventKind.set): "Moonset",
}


def parse_date(text: str) -> date:
    if len(text) != 8 or not text.isdigit():
        raise ValueError(f"date must be 8 digits (YYYYMMDD): {text!r}")
    return datetime.strptime(text, "%Y%m%d").date()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sunmoon",
        description="Rise, transit and set of the Sun and the Moon for one civil day.",
    )
    parser.add_argument("date", nargs="?", help="calendar date, YYYYMMDD")
    parser.add_argument("latitude", nargs="?", type=float, help="degrees, north positive")
    parser.add_argument("longitude", nargs="?", type=float, help="degrees, east positive")
    parser.add_argument("height", nargs="?", type=float, help="metres above sea level")
    parser.add_argument(
        "--utc-offset",
        type=float,
        default=DEFAULT_UTC_OFFSET_HOURS,
        help="civil zone offset from UTC in hours (default: %(default)s)",
    )
    parser.add_argument(
        "--table-dir",
        default=None,
        help="directory holding LEAP_SEC.txt and DUT1.txt (default: $SUNMOON_TABLE_DIR or bundled)",
    )
    parser.add_argument(
        "--update-leap-seconds",
        action="store_true",
        help="download the IERS leap-second list into the table directory and exit",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log progress to stderr")
    return parser


def _hemisphere(value: float, positive: str, negative: str) -> str:
    return f"{abs(value):.4f}{positive if value >= 0 else negative}"


def format_event(result: EventResult) -> str:
    label = _LABELS[(result.body, result.kind)]
    name = "altitude" if result.kind is EventKind.transit else "azimuth"
    if not result.occurred:
        return f"{label:<12} --:--:-- ({name} ---.--°)"
    return f"{label:<12} {result.instant:%H:%M:%S} ({name} {result.angle:6.2f}°)"


def format_report(calculator: SunMoonCalculator) -> List[str]:
    observer = calculator.observer
    lines = [
        f"[{calculator.civil_date.isoformat()} {calculator.midnight:%Z} "
        f"{_hemisphere(observer.latitude, 'N', 'S')} "
        f"{_hemisphere(observer.longitude, 'E', 'W')} {observer.height:.4f}m]"
    ]
    for body in Body:
        for kind in (EventKind.rise, EventKind.transit, EventKind.set):
            lines.append(format_event(calculator.compute_event(body, kind)))
    return lines


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING, format="%(message)s"
    )

    try:
        if args.update_leap_seconds:
            target = args.table_dir or os.environ.get("SUNMOON_TABLE_DIR")
            if not target:
                print(
                    "error: --update-leap-seconds needs --table-dir or SUNMOON_TABLE_DIR",
                    file=sys.stderr,
                )
                return 1
            destination = update_leap_seconds(target)
            print(destination)
            return 0

        if None in (args.date, args.latitude, args.longitude, args.height):
            parser.print_usage(sys.stderr)
            print("error: DATE LATITUDE LONGITUDE HEIGHT are required", file=sys.stderr)
            return 1
        civil_date = parse_date(args.date)
        tables = read_tables(args.table_dir or resolve_table_source())
        calculator = SunMoonCalculator(
            civil_date, args.latitude, args.longitude, args.height, tables, args.utc_offset
        )
        for line in format_report(calculator):
            print(line)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except (TableError, CalculationError) as exc:
        LOGGER.error(json.dumps({"event": "error", "error": str(exc)}))
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
