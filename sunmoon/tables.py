"""Leap-second and DUT1 lookup tables."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

import httpx

__all__ = [
    "LookupTables",
    "TableError",
    "TableAcquisitionError",
    "parse_leap_seconds",
    "parse_dut1",
    "read_tables",
    "load_tables",
    "loaded_tables",
    "resolve_table_source",
    "update_leap_seconds",
]

LOGGER = logging.getLogger(__name__)

LEAP_SECONDS_FILENAME = "LEAP_SEC.txt"
DUT1_FILENAME = "DUT1.txt"
PACKAGED_TABLE_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_LEAP_SECONDS_URL = "https://hpiers.obspm.fr/iers/bul/bulc/ntp/leap-seconds.list"
NTP_EPOCH = datetime(1900, 1, 1)

_DATE_PATTERN = re.compile(r"^\d{8}$")

_LOADED_TABLES: Optional["LookupTables"] = None
_LOAD_LOCK = Lock()

T = TypeVar("T")


class TableError(RuntimeError):
    """Raised when a lookup table is missing, unreadable or malformed."""


class TableAcquisitionError(TableError):
    """Raised when a lookup table cannot be downloaded."""


@dataclass(frozen=True)
class LookupTables:
    """Parsed lookup tables, each sorted ascending by ``YYYYMMDD`` date."""

    leap_seconds: Tuple[Tuple[str, int], ...]
    dut1: Tuple[Tuple[str, float], ...]
    source: str = "<memory>"


def _parse_rows(
    lines: Iterable[str], convert: Callable[[str], T], name: str
) -> Tuple[Tuple[str, T], ...]:
    rows: List[Tuple[str, T]] = []
    for number, line in enumerate(lines, start=1):
        fields = line.split("#", 1)[0].split()
        if not fields:
            continue
        if len(fields) < 2:
            raise TableError(f"{name} line {number}: expected a date and a value")
        date_str, value_str = fields[0], fields[1]
        if not _DATE_PATTERN.match(date_str):
            raise TableError(f"{name} line {number}: date must be YYYYMMDD, got {date_str!r}")
        try:
            value = convert(value_str)
        except ValueError as exc:
            raise TableError(f"{name} line {number}: invalid value {value_str!r}") from exc
        if rows and date_str < rows[-1][0]:
            raise TableError(f"{name} line {number}: dates are not in ascending order")
        rows.append((date_str, value))
    return tuple(rows)


def parse_leap_seconds(lines: Iterable[str]) -> Tuple[Tuple[str, int], ...]:
    """Parse ``YYYYMMDD UTC-TAI`` records."""

    return _parse_rows(lines, int, LEAP_SECONDS_FILENAME)


def parse_dut1(lines: Iterable[str]) -> Tuple[Tuple[str, float], ...]:
    """Parse ``YYYYMMDD DUT1`` records."""

    return _parse_rows(lines, float, DUT1_FILENAME)


def _read_lines(path: Path) -> List[str]:
    if not path.is_file():
        raise TableError(f"Lookup table not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            return handle.readlines()
    except OSError as exc:
        raise TableError(f"Failed to read lookup table '{path}': {exc}") from exc


def read_tables(table_dir: str | os.PathLike[str]) -> LookupTables:
    """Read both lookup tables from *table_dir*.

    Raises
    ------
    TableError
        If the directory or either file is missing, unreadable, malformed or
        holds no records.
    """

    path = Path(table_dir).expanduser()
    if not path.is_dir():
        raise TableError(f"Lookup table directory not found: {path}")

    leap_seconds = parse_leap_seconds(_read_lines(path / LEAP_SECONDS_FILENAME))
    dut1 = parse_dut1(_read_lines(path / DUT1_FILENAME))
    if not leap_seconds:
        raise TableError(f"No records in {path / LEAP_SECONDS_FILENAME}")
    if not dut1:
        raise TableError(f"No records in {path / DUT1_FILENAME}")
    return LookupTables(leap_seconds=leap_seconds, dut1=dut1, source=str(path))


def load_tables(table_dir: str | os.PathLike[str]) -> LookupTables:
    """Load the lookup tables in *table_dir* and cache them for the process.

    Later calls for the same directory return the cached tables; a different
    directory replaces the cache.
    """

    global _LOADED_TABLES

    source = str(Path(table_dir).expanduser())
    cached = _LOADED_TABLES
    if cached is not None and cached.source == source:
        return cached

    with _LOAD_LOCK:
        if _LOADED_TABLES is not None and _LOADED_TABLES.source == source:
            return _LOADED_TABLES
        tables = read_tables(table_dir)
        _LOADED_TABLES = tables
        LOGGER.info(
            json.dumps(
                {
                    "event": "tables_loaded",
                    "source": tables.source,
                    "leap_second_rows": len(tables.leap_seconds),
                    "dut1_rows": len(tables.dut1),
                }
            )
        )
        return tables


def loaded_tables() -> Optional[LookupTables]:
    """Return the tables cached by :func:`load_tables`, if any."""

    return _LOADED_TABLES


def resolve_table_source() -> Path:
    """Return the directory holding the lookup tables.

    ``SUNMOON_TABLE_DIR`` overrides the tables shipped with the package.
    """

    override = os.environ.get("SUNMOON_TABLE_DIR")
    if override:
        path = Path(override).expanduser()
        if not path.is_dir():
            raise TableError(f"SUNMOON_TABLE_DIR is not a directory: {path}")
        return path
    return PACKAGED_TABLE_DIR


def _leap_seconds_list_to_records(text: str) -> List[str]:
    """Convert IERS ``leap-seconds.list`` content into ``YYYYMMDD UTC-TAI`` lines."""

    records: List[str] = []
    for line in text.splitlines():
        fields = line.split("#", 1)[0].split()
        if len(fields) < 2:
            continue
        try:
            ntp_seconds = int(fields[0])
            tai_minus_utc = int(fields[1])
        except ValueError as exc:
            raise TableAcquisitionError(f"Unexpected leap-seconds.list line: {line!r}") from exc
        effective = NTP_EPOCH + timedelta(seconds=ntp_seconds)
        records.append(f"{effective:%Y%m%d} {-tai_minus_utc}")
    if not records:
        raise TableAcquisitionError("leap-seconds.list contained no records")
    return records


def update_leap_seconds(
    table_dir: str | os.PathLike[str],
    url: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Download the IERS leap-second list and rewrite ``LEAP_SEC.txt`` in *table_dir*."""

    url = url or os.environ.get("SUNMOON_LEAP_SECONDS_URL", DEFAULT_LEAP_SECONDS_URL)
    directory = Path(table_dir).expanduser()
    if directory.resolve() == PACKAGED_TABLE_DIR:
        raise TableError("Refusing to overwrite the lookup tables bundled with the package")
    directory.mkdir(parents=True, exist_ok=True)
    destination = directory / LEAP_SECONDS_FILENAME
    partial = destination.with_suffix(".part")

    LOGGER.info(
        json.dumps({"event": "leap_seconds_downloading", "url": url, "destination": str(destination)})
    )
    owns_client = client is None
    http = client or httpx.Client(timeout=httpx.Timeout(60.0, connect=30.0))
    try:
        response = http.get(url)
        response.raise_for_status()
        records = _leap_seconds_list_to_records(response.text)
        with partial.open("w", encoding="utf-8") as handle:
            handle.write("\n".join(records) + "\n")
        partial.replace(destination)
    except httpx.HTTPError as exc:
        raise TableAcquisitionError(f"Failed to download leap seconds from {url}: {exc}") from exc
    finally:
        if partial.exists():
            partial.unlink()
        if owns_client:
            http.close()

    LOGGER.info(
        json.dumps(
            {
                "event": "leap_seconds_downloaded",
                "url": url,
                "destination": str(destination),
                "rows": len(records),
            }
        )
    )
    return destination
