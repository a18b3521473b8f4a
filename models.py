"""Pydantic models for API requests and responses."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from sunmoon.astro import Body, EventKind, EventStatus


class SunMoonQueryParams(BaseModel):
    """Validated query parameters for the ``/sunmoon`` endpoint."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    lon: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees")
    date: dt.date = Field(..., description="Civil calendar date (YYYY-MM-DD)")
    height_m: float = Field(0.0, ge=0.0, description="Observer height above sea level in meters")
    utc_offset_hours: float = Field(
        9.0, description="Fixed offset of the civil zone from UTC in hours"
    )

    @field_validator("utc_offset_hours")
    @classmethod
    def validate_offset_hours(cls, value: float) -> float:
        if not -24.0 < value < 24.0:
            raise ValueError("utc_offset_hours must be within ±24 hours")
        return value


class EventModel(BaseModel):
    """One rise, transit or set event."""

    body: Body
    kind: EventKind
    status: EventStatus
    time_local: Optional[str] = Field(
        None, description="Event time in the civil zone (ISO-8601), null when it does not occur"
    )
    azimuth: Optional[float] = Field(None, description="Azimuth in degrees for rise/set")
    altitude: Optional[float] = Field(None, description="Altitude in degrees for transit")


class TimeScaleModel(BaseModel):
    leap_second_count: int = Field(..., description="UTC - TAI in seconds")
    dut1: float = Field(..., description="UT1 - UTC in seconds")
    delta_t: float = Field(..., description="TT - UT1 in seconds")
    source: str = Field(..., description="Either leap_seconds or polynomial")


class SunMoonResponse(BaseModel):
    """Successful sun and moon events payload."""

    ok: bool = True
    date: dt.date = Field(..., description="Requested civil date")
    latitude: float = Field(..., description="Latitude in degrees")
    longitude: float = Field(..., description="Longitude in degrees")
    height_m: float = Field(..., description="Height above sea level")
    utc_offset_hours: float
    time_scales: TimeScaleModel
    sunrise: EventModel
    sun_transit: EventModel
    sunset: EventModel
    moonrise: EventModel
    moon_transit: EventModel
    moonset: EventModel


class HealthResponse(BaseModel):
    """Health-check response."""

    ok: bool = True
    tables_loaded: bool
    leap_second_rows: int
    dut1_rows: int


class ErrorResponse(BaseModel):
    """Error payload."""

    ok: bool = False
    code: str
    error: str
