"""Sun and Moon rise, transit and set calculations."""

from .astro import (
    Body,
    EventKind,
    EventResult,
    EventStatus,
    SunMoonCalculator,
    compute_sun_moon_times,
)
from .tables import LookupTables, load_tables, resolve_table_source

__all__ = [
    "Body",
    "EventKind",
    "EventResult",
    "EventStatus",
    "LookupTables",
    "SunMoonCalculator",
    "compute_sun_moon_times",
    "load_tables",
    "resolve_table_source",
]
