"""Rise, set and transit of the Sun and the Moon for one civil day."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple

from . import series
from .series import normalize_angle
from .tables import LookupTables, TableError, loaded_tables
from .timescale import TimeScaleCorrection, TimeScaleState

__all__ = [
    "Body",
    "Ecliptic",
    "Equatorial",
    "EventContext",
    "EventKind",
    "EventStatus",
    "EventResult",
    "Observer",
    "SunMoonCalculator",
    "RiseSetSolver",
    "CalculationError",
    "ConvergenceError",
    "compute_sun_moon_times",
    "day_progress",
    "ecliptic_to_equatorial",
    "local_sidereal_time",
    "normalize_angle",
    "normalize_hour_angle",
    "refraction",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_UTC_OFFSET_HOURS = 9.0  # JST
ASTRONOMICAL_REFRACTION = 0.585556  # degrees at the horizon
DIP_COEFFICIENT = 0.0353333  # degrees per sqrt(metre)
CONVERGENCE_EPSILON = 5.0e-5  # days
MAX_ITERATIONS = 500
SUN_APPARENT_RADIUS_AU = 0.266994  # degrees at 1 AU
SUN_PARALLAX_AU = 0.0024428  # degrees at 1 AU
NO_EVENT_ANGLE = -1.0
RADAU_MIN_ALTITUDE = 4.0  # degrees


class CalculationError(RuntimeError):
    """Raised when an event cannot be computed."""


class ConvergenceError(CalculationError):
    """Raised when the event solver fails to converge."""


class Body(str, Enum):
    sun = "sun"
    moon = "moon"


class EventKind(str, Enum):
    rise = "rise"
    set = "set"
    transit = "transit"


class EventStatus(str, Enum):
    """Outcome of an event calculation."""

    ok = "ok"
    no_event = "no_event"
    always_above = "always_above"
    always_below = "always_below"


# Gain applied to the hour-angle difference each iteration, in degrees per day.
_GAIN: Dict[Body, float] = {Body.sun: 360.0, Body.moon: 347.8}


@dataclass(frozen=True)
class Observer:
    """Geographic position: degrees north/east positive, height in metres."""

    latitude: float
    longitude: float
    height: float = 0.0

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude", "height"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude must be within [-90, 90]: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude must be within [-180, 180]: {self.longitude}")
        if self.height < 0.0:
            raise ValueError(f"height must not be negative: {self.height}")

    @property
    def dip(self) -> float:
        """Dip of the horizon in degrees."""

        return DIP_COEFFICIENT * math.sqrt(self.height)


class Ecliptic(NamedTuple):
    latitude: float
    longitude: float


class Equatorial(NamedTuple):
    declination: float
    right_ascension: float


@dataclass(frozen=True)
class EventResult:
    """Instant and angle of one event.

    ``angle`` is the azimuth (0-360, from north through east) for rise/set and
    the refraction-corrected altitude for transit. Events that do not happen
    carry the Unix epoch as ``instant`` and ``-1`` as ``angle``.
    """

    body: Body
    kind: EventKind
    instant: datetime
    angle: float
    status: EventStatus = EventStatus.ok

    @property
    def occurred(self) -> bool:
        return self.status is EventStatus.ok


def _sin(deg: float) -> float:
    return math.sin(math.radians(deg))


def _cos(deg: float) -> float:
    return math.cos(math.radians(deg))


def normalize_hour_angle(angle: float) -> float:
    """Reduce *angle* into ``(-180, 180]`` by whole turns."""

    while angle > 180.0:
        angle -= 360.0
    while angle <= -180.0:
        angle += 360.0
    return angle


def day_progress(civil_date: date, utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> float:
    """Days from 2000-01-01 12:00 to local midnight starting *civil_date*.

    January and February count as months 13 and 14 of the previous year.
    """

    y = civil_date.year - 2000
    m = civil_date.month
    d = civil_date.day
    if m < 3:
        y -= 1
        m += 12
    return (
        365.0 * y + 30.0 * m + d
        - 33.5 - utc_offset_hours / 24.0
        + math.floor(3 * (m + 1) / 5.0)
        + math.floor(y / 4.0)
    )


def mean_obliquity(jy: float) -> float:
    return 23.439291 - 0.000130042 * jy


def ecliptic_to_equatorial(jy: float, coord: Ecliptic) -> Equatorial:
    """Rotate ecliptic (latitude, longitude) into (declination, right ascension) degrees."""

    eps = mean_obliquity(jy)
    bet, lmd = coord.latitude, coord.longitude
    a = _cos(bet) * _cos(lmd)
    b = -_sin(bet) * _sin(eps) + _cos(bet) * _sin(lmd) * _cos(eps)
    c = _sin(bet) * _cos(eps) + _cos(bet) * _sin(lmd) * _sin(eps)
    right_ascension = normalize_angle(math.degrees(math.atan2(b, a)))
    declination = math.degrees(math.asin(max(-1.0, min(1.0, c))))
    return Equatorial(declination, right_ascension)


def local_sidereal_time(
    jy: float,
    fractional_day: float,
    longitude: float,
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
) -> float:
    """Local sidereal time in degrees.

    *fractional_day* counts from local midnight; at +9 h the zone term makes
    the constant 325.4606.
    """

    return normalize_angle(
        280.4606 + 15.0 * (12.0 - utc_offset_hours)
        + 360.007700536 * jy
        + 0.00000003879 * jy * jy
        + 360.0 * fractional_day
        + longitude
    )


def radau_refraction(altitude: float) -> float:
    """Refraction in degrees for an apparent altitude of about 4 degrees or more."""

    tan_z = math.tan(math.radians(90.0 - altitude))
    return (58.76 - (0.406 - 0.0192 * tan_z) * tan_z) * tan_z / 3600.0


def refraction(altitude: float) -> float:
    """Refraction correction in degrees for a geometric *altitude*.

    Radau's formula diverges towards the horizon, so altitudes below
    :data:`RADAU_MIN_ALTITUDE` are left uncorrected.
    """

    if altitude >= RADAU_MIN_ALTITUDE:
        return radau_refraction(altitude)
    return 0.0


class _Circumpolar(Exception):
    def __init__(self, status: EventStatus) -> None:
        super().__init__(status.value)
        self.status = status


class Solution(NamedTuple):
    fractional_day: float
    status: EventStatus
    iterations: int


class EventContext:
    """Per-calculation values fixed at construction."""

    def __init__(
        self,
        observer: Observer,
        day_progress: float,
        delta_t_days: float,
        utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
    ) -> None:
        self.observer = observer
        self.day_progress = day_progress
        self.delta_t_days = delta_t_days
        self.utc_offset_hours = utc_offset_hours

    def sidereal_time(self, jy: float, fractional_day: float) -> float:
        return local_sidereal_time(
            jy, fractional_day, self.observer.longitude, self.utc_offset_hours
        )

    def julian_years(self, fractional_day: float) -> float:
        return (self.day_progress + fractional_day + self.delta_t_days) / 365.25

    def ecliptic(self, body: Body, jy: float) -> Ecliptic:
        if body is Body.sun:
            return Ecliptic(0.0, series.solar_longitude(jy))
        return Ecliptic(series.lunar_latitude(jy), series.lunar_longitude(jy))

    def horizon_altitude(self, body: Body, jy: float) -> float:
        """Altitude of the body's centre at the moment of rise or set."""

        if body is Body.sun:
            dist = series.solar_distance(jy)
            radius = SUN_APPARENT_RADIUS_AU / dist
            parallax = SUN_PARALLAX_AU / dist
            return -radius - ASTRONOMICAL_REFRACTION - self.observer.dip + parallax
        return series.lunar_parallax(jy) - self.observer.dip - ASTRONOMICAL_REFRACTION

    def hour_angle_difference(
        self, equatorial: Equatorial, sidereal: float, altitude: float, kind: EventKind
    ) -> float:
        """Hour angle of the event point minus the body's hour angle, in ``(-180, 180]``."""

        if kind is EventKind.transit:
            tk = 0.0
        else:
            lat = self.observer.latitude
            cos_tk = (_sin(altitude) - _sin(equatorial.declination) * _sin(lat)) / (
                _cos(equatorial.declination) * _cos(lat)
            )
            if cos_tk > 1.0:
                raise _Circumpolar(EventStatus.always_below)
            if cos_tk < -1.0:
                raise _Circumpolar(EventStatus.always_above)
            tk = math.degrees(math.acos(cos_tk))
            if kind is EventKind.rise:
                tk = -tk
        return normalize_hour_angle(tk - sidereal + equatorial.right_ascension)

    def hour_angle(self, equatorial: Equatorial, fractional_day: float, jy: float) -> float:
        return self.sidereal_time(jy, fractional_day) - equatorial.right_ascension

    def azimuth(self, coord: Ecliptic, fractional_day: float, jy: float) -> float:
        equatorial = ecliptic_to_equatorial(jy, coord)
        hang = self.hour_angle(equatorial, fractional_day, jy)
        lat = self.observer.latitude
        dec = equatorial.declination
        east = -_cos(dec) * _sin(hang)
        north = _sin(dec) * _cos(lat) - _cos(dec) * _sin(lat) * _cos(hang)
        return normalize_angle(math.degrees(math.atan2(east, north)))

    def altitude(self, coord: Ecliptic, fractional_day: float, jy: float) -> float:
        equatorial = ecliptic_to_equatorial(jy, coord)
        hang = self.hour_angle(equatorial, fractional_day, jy)
        lat = self.observer.latitude
        dec = equatorial.declination
        sin_alt = _sin(dec) * _sin(lat) + _cos(dec) * _cos(lat) * _cos(hang)
        alt = math.degrees(math.asin(max(-1.0, min(1.0, sin_alt))))
        return alt + refraction(alt)


class RiseSetSolver:
    """Fixed-point iteration for the fractional day of one event."""

    def __init__(self, context: EventContext, body: Body, kind: EventKind) -> None:
        self.context = context
        self.body = Body(body)
        self.kind = EventKind(kind)
        self.gain = _GAIN[self.body]

    def correction(self, fractional_day: float) -> float:
        """Correction in days to apply to *fractional_day*."""

        ctx = self.context
        jy = ctx.julian_years(fractional_day)
        equatorial = ecliptic_to_equatorial(jy, ctx.ecliptic(self.body, jy))
        altitude = 0.0
        if self.kind is not EventKind.transit:
            altitude = ctx.horizon_altitude(self.body, jy)
        sidereal = ctx.sidereal_time(jy, fractional_day)
        return ctx.hour_angle_difference(equatorial, sidereal, altitude, self.kind) / self.gain

    def solve(self) -> Solution:
        t = 0.5
        rev = 1.0
        iterations = 0
        while abs(rev) > CONVERGENCE_EPSILON:
            if iterations >= MAX_ITERATIONS:
                raise ConvergenceError(
                    f"{self.body.value} {self.kind.value} did not converge "
                    f"after {MAX_ITERATIONS} iterations"
                )
            try:
                rev = self.correction(t)
            except _Circumpolar as exc:
                return Solution(t, exc.status, iterations)
            t += rev
            iterations += 1

        if self.body is Body.moon and not 0.0 <= t < 1.0:
            return Solution(t, EventStatus.no_event, iterations)
        return Solution(t, EventStatus.ok, iterations)


class SunMoonCalculator:
    """Sun and Moon events for one civil date at one observer position.

    Time-scale offsets and the day-progress epoch are computed once here and
    shared by every event calculation on the instance.
    """

    def __init__(
        self,
        civil_date: date,
        latitude: float,
        longitude: float,
        height: float,
        tables: LookupTables,
        utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
    ) -> None:
        if isinstance(civil_date, datetime):
            civil_date = civil_date.date()
        if not isinstance(civil_date, date):
            raise ValueError(f"civil_date must be a date, got {civil_date!r}")
        if not -24.0 < utc_offset_hours < 24.0:
            raise ValueError(f"utc_offset_hours must be within ±24 hours: {utc_offset_hours}")

        self.observer = Observer(latitude, longitude, height)
        self.civil_date = civil_date
        self.zone = timezone(timedelta(hours=utc_offset_hours))
        self.midnight = datetime.combine(civil_date, datetime.min.time(), tzinfo=self.zone)
        self.utc = self.midnight.astimezone(UTC)
        self.time_scales: TimeScaleState = TimeScaleCorrection(tables).correct(self.utc)
        self.day_progress = day_progress(civil_date, utc_offset_hours)
        self._context = EventContext(
            self.observer, self.day_progress, self.time_scales.delta_t_days, utc_offset_hours
        )

    @property
    def no_event_instant(self) -> datetime:
        return datetime.fromtimestamp(0, UTC).astimezone(self.zone)

    def solver(self, body: Body, kind: EventKind) -> RiseSetSolver:
        return RiseSetSolver(self._context, body, kind)

    def compute_event(self, body: Body, kind: EventKind) -> EventResult:
        body, kind = Body(body), EventKind(kind)
        solution = self.solver(body, kind).solve()
        if solution.status is not EventStatus.ok:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "no_event",
                        "body": body.value,
                        "kind": kind.value,
                        "status": solution.status.value,
                        "date": self.civil_date.isoformat(),
                    }
                )
            )
            return EventResult(body, kind, self.no_event_instant, NO_EVENT_ANGLE, solution.status)

        t = solution.fractional_day
        jy = self._context.julian_years(t)
        coord = self._context.ecliptic(body, jy)
        if kind is EventKind.transit:
            angle = self._context.altitude(coord, t, jy)
        else:
            angle = self._context.azimuth(coord, t, jy)
        instant = self.midnight + timedelta(days=t)
        LOGGER.debug(
            json.dumps(
                {
                    "event": "converged",
                    "body": body.value,
                    "kind": kind.value,
                    "fractional_day": t,
                    "iterations": solution.iterations,
                }
            )
        )
        return EventResult(body, kind, instant, angle)

    def compute_sun_event(self, kind: EventKind) -> EventResult:
        return self.compute_event(Body.sun, kind)

    def compute_moon_event(self, kind: EventKind) -> EventResult:
        return self.compute_event(Body.moon, kind)

    def compute_all(self) -> Dict[Tuple[Body, EventKind], EventResult]:
        return {
            (body, kind): self.compute_event(body, kind)
            for body in Body
            for kind in (EventKind.rise, EventKind.transit, EventKind.set)
        }


def compute_sun_moon_times(
    civil_date: date,
    lat: float,
    lon: float,
    height_m: float,
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
    tables: Optional[LookupTables] = None,
) -> Dict[str, object]:
    """Compute all six events for *civil_date* at the given location.

    Parameters
    ----------
    civil_date:
        Calendar date in the civil zone given by *utc_offset_hours*.
    lat, lon:
        Geographic coordinates in degrees (north- and east-positive).
    height_m:
        Observer height above sea level in metres.
    tables:
        Lookup tables; defaults to those loaded by :func:`load_tables`.

    Returns
    -------
    dict
        ``time_scales`` (:class:`TimeScaleState`) and ``events``, a mapping of
        ``"<body>_<kind>"`` to :class:`EventResult`.
    """

    if tables is None:
        tables = loaded_tables()
    if tables is None:
        raise TableError("Lookup tables have not been loaded")

    calculator = SunMoonCalculator(civil_date, lat, lon, height_m, tables, utc_offset_hours)
    events = {
        f"{body.value}_{kind.value}": result
        for (body, kind), result in calculator.compute_all().items()
    }
    return {"time_scales": calculator.time_scales, "events": events}
