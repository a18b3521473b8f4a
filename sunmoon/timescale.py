"""UTC to dynamical time corrections: leap seconds, DUT1 and ΔT."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional, Sequence, Tuple, TypeVar

import erfa

from .tables import LookupTables

__all__ = ["TimeScaleCorrection", "TimeScaleState", "delta_t_polynomial"]

LOGGER = logging.getLogger(__name__)

SOURCE_LEAP_SECONDS = "leap_seconds"
SOURCE_POLYNOMIAL = "polynomial"

T = TypeVar("T")


@dataclass(frozen=True)
class TimeScaleState:
    """Time-scale offsets for one UTC instant, in seconds."""

    leap_second_count: int
    dut1: float
    delta_t: float
    source: str

    @property
    def delta_t_days(self) -> float:
        return self.delta_t / erfa.DAYSEC


def _date_key(utc: datetime) -> str:
    return f"{utc.year:04d}{utc.month:02d}{utc.day:02d}"


def _lookup(rows: Sequence[Tuple[str, T]], key: str) -> Optional[T]:
    # Rows are ascending; the last row on or before the date wins.
    for date_str, value in reversed(rows):
        if date_str <= key:
            return value
    return None


def _poly(t: float, coeffs: Tuple[float, ...]) -> float:
    acc = 0.0
    for c in reversed(coeffs):
        acc = acc * t + c
    return acc


def delta_t_polynomial(year: int, month: int) -> float:
    """ΔT in seconds from the Espenak-Meeus era polynomials.

    The era is chosen by the calendar *year*; the polynomial is evaluated at
    the middle of *month*.
    """

    y = year + (month - 0.5) / 12.0

    if year < -500:
        u = (y - 1820.0) / 100.0
        return -20.0 + 32.0 * u * u
    if year < 500:
        return _poly(y / 100.0, (
            10583.6, -1014.41, 33.78311, -5.952053,
            -0.1798452, 0.022174192, 0.0090316521,
        ))
    if year < 1600:
        return _poly((y - 1000.0) / 100.0, (
            1574.2, -556.01, 71.23472, 0.319781,
            -0.8503463, -0.005050998, 0.0083572073,
        ))
    if year < 1700:
        t = y - 1600.0
        return 120.0 - 0.9808 * t - 0.01532 * t ** 2 + t ** 3 / 7129.0
    if year < 1800:
        t = y - 1700.0
        return 8.83 + 0.1603 * t - 0.0059285 * t ** 2 + 0.00013336 * t ** 3 - t ** 4 / 1174000.0
    if year < 1860:
        return _poly(y - 1800.0, (
            13.72, -0.332447, 0.0068612, 0.0041116,
            -0.00037436, 0.0000121272, -0.0000001699, 0.000000000875,
        ))
    if year < 1900:
        t = y - 1860.0
        return (
            7.62 + 0.5737 * t - 0.251754 * t ** 2 + 0.01680668 * t ** 3
            - 0.0004473624 * t ** 4 + t ** 5 / 233174.0
        )
    if year < 1920:
        t = y - 1900.0
        return -2.79 + 1.494119 * t - 0.0598939 * t ** 2 + 0.0061966 * t ** 3 - 0.000197 * t ** 4
    if year < 1941:
        t = y - 1920.0
        return 21.20 + 0.84493 * t - 0.076100 * t ** 2 + 0.0020936 * t ** 3
    if year < 1961:
        t = y - 1950.0
        return 29.07 + 0.407 * t - t ** 2 / 233.0 + t ** 3 / 2547.0
    if year < 1986:
        t = y - 1975.0
        return 45.45 + 1.067 * t - t ** 2 / 260.0 - t ** 3 / 718.0
    if year < 2005:
        return _poly(y - 2000.0, (
            63.86, 0.3345, -0.060374, 0.0017275, 0.000651814, 0.00002373599,
        ))
    if year < 2050:
        t = y - 2000.0
        return 62.92 + 0.32217 * t + 0.005589 * t ** 2
    u = (y - 1820.0) / 100.0
    if year <= 2150:
        return -20.0 + 32.0 * u * u - 0.5628 * (2150.0 - y)
    return -20.0 + 32.0 * u * u


class TimeScaleCorrection:
    """Derive leap seconds, DUT1 and ΔT for a UTC instant from lookup tables.

    ΔT is memoized on the instance: the first :meth:`correct` call fixes it and
    later calls reuse it.
    """

    def __init__(self, tables: LookupTables) -> None:
        self._tables = tables
        self._state: Optional[TimeScaleState] = None

    def leap_second_count(self, utc: datetime) -> Optional[int]:
        """UTC-TAI in whole seconds, or ``None`` when the table predates no row."""

        return _lookup(self._tables.leap_seconds, _date_key(utc))

    def dut1(self, utc: datetime) -> float:
        value = _lookup(self._tables.dut1, _date_key(utc))
        return 0.0 if value is None else value

    def correct(self, utc: datetime) -> TimeScaleState:
        if self._state is not None:
            return self._state

        if utc.tzinfo is not None:
            utc = utc.astimezone(UTC)
        leap_seconds = self.leap_second_count(utc)
        dut1 = self.dut1(utc)
        if leap_seconds is not None:
            # TT - UT1 = (TT - TAI) - (UTC - TAI) - (UT1 - UTC)
            state = TimeScaleState(
                leap_second_count=leap_seconds,
                dut1=dut1,
                delta_t=erfa.TTMTAI - leap_seconds - dut1,
                source=SOURCE_LEAP_SECONDS,
            )
        else:
            state = TimeScaleState(
                leap_second_count=0,
                dut1=dut1,
                delta_t=delta_t_polynomial(utc.year, utc.month),
                source=SOURCE_POLYNOMIAL,
            )
        self._state = state
        LOGGER.debug(
            json.dumps(
                {
                    "event": "time_scale_state",
                    "utc": utc.isoformat(),
                    "leap_second_count": state.leap_second_count,
                    "dut1": state.dut1,
                    "delta_t": state.delta_t,
                    "source": state.source,
                }
            )
        )
        return state
