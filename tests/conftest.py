from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from sunmoon.astro import SunMoonCalculator
from sunmoon.tables import PACKAGED_TABLE_DIR, LookupTables, read_tables

TOKYO = {"latitude": 35.6586, "longitude": 139.7454, "height": 0.0}


@pytest.fixture(scope="session")
def tables() -> LookupTables:
    return read_tables(PACKAGED_TABLE_DIR)


@pytest.fixture()
def tokyo(tables: LookupTables) -> SunMoonCalculator:
    return SunMoonCalculator(date(2021, 4, 9), tables=tables, **TOKYO)
