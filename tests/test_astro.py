from __future__ import annotations

import math
from datetime import UTC, date, datetime, timedelta

import erfa
import pytest

import sunmoon.astro as astro
import sunmoon.tables as tables_module
from sunmoon.astro import (
    CONVERGENCE_EPSILON,
    Body,
    ConvergenceError,
    Ecliptic,
    EventKind,
    EventStatus,
    Observer,
    RiseSetSolver,
    SunMoonCalculator,
    compute_sun_moon_times,
    day_progress,
    ecliptic_to_equatorial,
    local_sidereal_time,
    normalize_hour_angle,
    radau_refraction,
    refraction,
)
from sunmoon.tables import LookupTables, TableError
from sunmoon.timescale import TimeScaleCorrection

from conftest import TOKYO

J2000_JD = 2451545.0
SVALBARD = {"latitude": 78.2232, "longitude": 15.6469, "height": 0.0}


def _minutes(instant: datetime) -> float:
    return instant.hour * 60 + instant.minute + instant.second / 60.0


def test_tokyo_sun_events(tokyo: SunMoonCalculator) -> None:
    sunrise = tokyo.compute_sun_event(EventKind.rise)
    transit = tokyo.compute_sun_event(EventKind.transit)
    sunset = tokyo.compute_sun_event(EventKind.set)

    assert sunrise.status is transit.status is sunset.status is EventStatus.ok
    assert sunrise.instant.date() == date(2021, 4, 9)
    assert 5 * 60 + 10 <= _minutes(sunrise.instant) <= 5 * 60 + 35
    assert 11 * 60 + 30 <= _minutes(transit.instant) <= 11 * 60 + 50
    assert 17 * 60 + 55 <= _minutes(sunset.instant) <= 18 * 60 + 20

    assert 79.0 <= sunrise.angle <= 81.5
    assert 61.5 <= transit.angle <= 62.5
    assert 278.5 <= sunset.angle <= 281.0


def test_tokyo_moon_events(tokyo: SunMoonCalculator) -> None:
    moonrise = tokyo.compute_moon_event(EventKind.rise)
    transit = tokyo.compute_moon_event(EventKind.transit)
    moonset = tokyo.compute_moon_event(EventKind.set)

    assert moonrise.occurred and transit.occurred and moonset.occurred
    assert moonrise.instant < transit.instant < moonset.instant
    assert 0.0 < moonrise.angle < 180.0
    assert 180.0 < moonset.angle < 360.0
    assert transit.angle > 0.0


def test_time_scales_use_leap_seconds(tokyo: SunMoonCalculator) -> None:
    state = tokyo.time_scales
    assert state.source == "leap_seconds"
    assert state.leap_second_count == -37
    assert state.dut1 == pytest.approx(-0.2)
    assert state.delta_t == pytest.approx(69.384)
    assert tokyo.day_progress == pytest.approx(7768.125)


@pytest.mark.parametrize("body", list(Body))
@pytest.mark.parametrize("kind", list(EventKind))
def test_solver_converges_below_epsilon(tokyo: SunMoonCalculator, body: Body, kind: EventKind) -> None:
    solver = tokyo.solver(body, kind)
    solution = solver.solve()
    assert solution.status is EventStatus.ok
    assert abs(solver.correction(solution.fractional_day)) < CONVERGENCE_EPSILON


def test_time_scales_and_day_progress_computed_once(
    monkeypatch: pytest.MonkeyPatch, tables: LookupTables
) -> None:
    corrections = []
    progress = []
    original_correct = TimeScaleCorrection.correct
    original_progress = astro.day_progress

    def counting_correct(self, utc):
        corrections.append(utc)
        return original_correct(self, utc)

    def counting_progress(*args, **kwargs):
        progress.append(args)
        return original_progress(*args, **kwargs)

    monkeypatch.setattr(astro.TimeScaleCorrection, "correct", counting_correct)
    monkeypatch.setattr(astro, "day_progress", counting_progress)

    calculator = SunMoonCalculator(date(2021, 4, 9), tables=tables, **TOKYO)
    state = calculator.time_scales
    first = calculator.compute_all()
    second = calculator.compute_all()

    assert len(corrections) == 1
    assert len(progress) == 1
    assert calculator.time_scales is state
    assert first == second


@pytest.mark.parametrize(
    "day, status",
    [(date(2025, 6, 21), EventStatus.always_above), (date(2025, 12, 21), EventStatus.always_below)],
)
def test_circumpolar_sun(tables: LookupTables, day: date, status: EventStatus) -> None:
    calculator = SunMoonCalculator(day, tables=tables, **SVALBARD)
    for kind in (EventKind.rise, EventKind.set):
        result = calculator.compute_sun_event(kind)
        assert result.status is status
        assert result.angle == -1.0
        assert result.instant == datetime.fromtimestamp(0, UTC)
        assert not math.isnan(result.angle)
    assert calculator.compute_sun_event(EventKind.transit).occurred


def test_moon_outside_civil_day_is_no_event(
    monkeypatch: pytest.MonkeyPatch, tokyo: SunMoonCalculator
) -> None:
    monkeypatch.setattr(RiseSetSolver, "correction", lambda self, t: 1.2 - t)

    result = tokyo.compute_moon_event(EventKind.rise)
    assert result.status is EventStatus.no_event
    assert result.angle == -1.0
    assert result.instant == datetime.fromtimestamp(0, UTC)

    sun = tokyo.compute_sun_event(EventKind.rise)
    assert sun.status is EventStatus.ok
    assert sun.instant == tokyo.midnight + timedelta(days=1.2)


def test_solver_iteration_bound(monkeypatch: pytest.MonkeyPatch, tokyo: SunMoonCalculator) -> None:
    monkeypatch.setattr(astro, "MAX_ITERATIONS", 1)
    with pytest.raises(ConvergenceError):
        tokyo.compute_sun_event(EventKind.rise)


@pytest.mark.parametrize(
    "angle, expected",
    [(0.0, 0.0), (180.0, 180.0), (-180.0, 180.0), (540.0, 180.0), (-190.0, 170.0), (725.0, 5.0)],
)
def test_normalize_hour_angle(angle: float, expected: float) -> None:
    value = normalize_hour_angle(angle)
    assert -180.0 < value <= 180.0
    assert value == pytest.approx(expected)


@pytest.mark.parametrize(
    "civil, expected",
    [
        (date(2000, 3, 1), 59.125),
        (date(2000, 1, 1), -0.875),
        (date(1999, 3, 1), -306.875),
        (date(2021, 4, 9), 7768.125),
    ],
)
def test_day_progress_known_values(civil: date, expected: float) -> None:
    assert day_progress(civil) == pytest.approx(expected)


@pytest.mark.parametrize(
    "civil",
    [date(1901, 3, 1), date(1950, 2, 28), date(1996, 2, 29), date(2024, 1, 31), date(2099, 12, 31)],
)
@pytest.mark.parametrize("offset", [9.0, 0.0, -5.5])
def test_day_progress_matches_erfa_calendar(civil: date, offset: float) -> None:
    djm0, djm = erfa.cal2jd(civil.year, civil.month, civil.day)
    expected = float(djm0) + float(djm) - J2000_JD - offset / 24.0
    assert day_progress(civil, offset) == pytest.approx(expected, abs=1e-9)


@pytest.mark.parametrize(
    "longitude, ra, dec",
    [(0.0, 0.0, 0.0), (90.0, 90.0, 23.439291), (180.0, 180.0, 0.0), (270.0, 270.0, -23.439291)],
)
def test_ecliptic_to_equatorial_cardinal_points(longitude: float, ra: float, dec: float) -> None:
    equatorial = ecliptic_to_equatorial(0.0, Ecliptic(0.0, longitude))
    assert equatorial.right_ascension == pytest.approx(ra, abs=1e-9)
    assert equatorial.declination == pytest.approx(dec, abs=1e-9)


def test_ecliptic_pole_maps_to_declination() -> None:
    equatorial = ecliptic_to_equatorial(0.0, Ecliptic(90.0, 0.0))
    assert equatorial.declination == pytest.approx(90.0 - 23.439291)
    assert equatorial.right_ascension == pytest.approx(270.0)


@pytest.mark.parametrize("offset", [9.0, 0.0, -5.0])
@pytest.mark.parametrize("fraction", [0.0, 0.3, 0.75])
def test_local_sidereal_time_matches_erfa(offset: float, fraction: float) -> None:
    civil = date(2021, 4, 9)
    longitude = 139.7454
    delta_t_days = 69.384 / erfa.DAYSEC
    k = day_progress(civil, offset)
    jy = (k + fraction + delta_t_days) / 365.25
    ut1 = J2000_JD + k + fraction

    expected = math.degrees(float(erfa.gmst06(ut1, 0.0, ut1 + delta_t_days, 0.0))) + longitude
    actual = local_sidereal_time(jy, fraction, longitude, offset)
    diff = (actual - expected + 180.0) % 360.0 - 180.0
    assert abs(diff) < 0.01


def test_radau_refraction() -> None:
    assert radau_refraction(90.0) == pytest.approx(0.0, abs=1e-12)
    assert radau_refraction(45.0) == pytest.approx((58.76 - 0.406 + 0.0192) / 3600.0)


def test_refraction_is_bounded_at_every_altitude() -> None:
    for tenth in range(-900, 901):
        altitude = tenth / 10.0
        correction = refraction(altitude)
        assert 0.0 <= correction < 0.25, altitude
    assert refraction(0.0) == 0.0
    assert refraction(-0.05) == 0.0
    assert refraction(3.9) == 0.0
    assert refraction(4.0) == pytest.approx(0.2259, abs=0.001)
    assert refraction(45.0) == radau_refraction(45.0)


@pytest.mark.parametrize(
    "body, day, latitude, longitude",
    [
        (Body.moon, date(2021, 8, 20), 65.0, 10.0),
        (Body.sun, date(2021, 11, 21), 70.0, 10.0),
        (Body.sun, date(2021, 12, 21), 66.0, 25.0),
    ],
)
def test_near_horizon_transit_altitude_is_finite(
    tables: LookupTables, body: Body, day: date, latitude: float, longitude: float
) -> None:
    calculator = SunMoonCalculator(day, latitude, longitude, 0.0, tables)
    result = calculator.compute_event(body, EventKind.transit)
    assert result.status is EventStatus.ok
    assert -90.0 <= result.angle <= 90.0
    assert abs(result.angle) < 10.0


@pytest.mark.parametrize("kind", [EventKind.rise, EventKind.set])
def test_circumpolar_moon(tables: LookupTables, kind: EventKind) -> None:
    # Near the 2025 major lunar standstill the Moon stays up for days at Svalbard,
    # then stays down for days half a month later.
    statuses = set()
    for offset in range(31):
        calculator = SunMoonCalculator(
            date(2025, 1, 1) + timedelta(days=offset), tables=tables, utc_offset_hours=1.0, **SVALBARD
        )
        result = calculator.compute_moon_event(kind)
        statuses.add(result.status)
        if result.status in (EventStatus.always_above, EventStatus.always_below):
            assert result.angle == -1.0
            assert result.instant == datetime.fromtimestamp(0, UTC)
    assert EventStatus.always_above in statuses
    assert EventStatus.always_below in statuses


def test_utc_offset_shifts_civil_day(tables: LookupTables, tokyo: SunMoonCalculator) -> None:
    jst = tokyo.compute_sun_event(EventKind.rise).instant
    utc_calc = SunMoonCalculator(date(2021, 4, 8), tables=tables, utc_offset_hours=0.0, **TOKYO)
    utc = utc_calc.compute_sun_event(EventKind.rise).instant
    assert abs((utc - jst).total_seconds()) < 60.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"latitude": 95.0, "longitude": 0.0, "height": 0.0},
        {"latitude": 0.0, "longitude": -181.0, "height": 0.0},
        {"latitude": 0.0, "longitude": 0.0, "height": -1.0},
        {"latitude": float("nan"), "longitude": 0.0, "height": 0.0},
        {"latitude": "35", "longitude": 0.0, "height": 0.0},
    ],
)
def test_observer_validation(kwargs) -> None:
    with pytest.raises(ValueError):
        Observer(**kwargs)


def test_calculator_rejects_bad_date(tables: LookupTables) -> None:
    with pytest.raises(ValueError):
        SunMoonCalculator("20210409", tables=tables, **TOKYO)


def test_compute_sun_moon_times_requires_tables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tables_module, "_LOADED_TABLES", None)
    with pytest.raises(TableError):
        compute_sun_moon_times(date(2021, 4, 9), 35.6586, 139.7454, 0.0)


def test_compute_sun_moon_times(tables: LookupTables) -> None:
    result = compute_sun_moon_times(date(2021, 4, 9), 35.6586, 139.7454, 0.0, tables=tables)
    assert set(result["events"]) == {
        "sun_rise", "sun_transit", "sun_set", "moon_rise", "moon_transit", "moon_set",
    }
    assert result["time_scales"].source == "leap_seconds"
    assert result["events"]["sun_transit"].kind is EventKind.transit
