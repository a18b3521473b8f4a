"""FastAPI application exposing sun and moon rise/transit/set computations."""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from models import (
    ErrorResponse,
    EventModel,
    HealthResponse,
    SunMoonQueryParams,
    SunMoonResponse,
    TimeScaleModel,
)
from sunmoon.astro import CalculationError, EventKind, EventResult, compute_sun_moon_times
from sunmoon.tables import LookupTables, TableError, load_tables, resolve_table_source

logging.basicConfig(level=logging.INFO, format="%(message)s")
LOGGER = logging.getLogger("sunmoon-api")

APP_DESCRIPTION = (
    "Sunrise, sunset, moonrise, moonset and transit times from low-precision "
    "analytic solar and lunar series"
)

TABLES: Optional[LookupTables] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global TABLES
    try:
        source_path = resolve_table_source()
        TABLES = load_tables(source_path)
    except TableError as exc:
        LOGGER.error(json.dumps({"event": "tables_load_failed", "error": str(exc)}))
        raise
    LOGGER.info(json.dumps({"event": "startup", "table_source": str(source_path)}))
    yield


app = FastAPI(
    title="Sunmoon API",
    description=APP_DESCRIPTION,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


def _event_model(result: EventResult) -> EventModel:
    if not result.occurred:
        return EventModel(body=result.body, kind=result.kind, status=result.status)
    angle_field = "altitude" if result.kind is EventKind.transit else "azimuth"
    return EventModel(
        body=result.body,
        kind=result.kind,
        status=result.status,
        time_local=result.instant.isoformat(),
        **{angle_field: round(result.angle, 4)},
    )


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    payload = ErrorResponse(code=code, error=message)
    LOGGER.error(json.dumps({"event": "error", "code": code, "message": message}))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = ", ".join(error["msg"] for error in exc.errors())
    return _error_response(422, "validation_error", messages)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled exception", exc_info=exc)
    return _error_response(500, "internal_error", "Unhandled server error")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        ok=True,
        tables_loaded=TABLES is not None,
        leap_second_rows=len(TABLES.leap_seconds) if TABLES else 0,
        dut1_rows=len(TABLES.dut1) if TABLES else 0,
    )


@app.get(
    "/sunmoon",
    response_model=SunMoonResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def sunmoon_endpoint(params: Annotated[SunMoonQueryParams, Query()]) -> SunMoonResponse:
    start_time = time.perf_counter()
    try:
        result = compute_sun_moon_times(
            civil_date=params.date,
            lat=params.lat,
            lon=params.lon,
            height_m=params.height_m,
            utc_offset_hours=params.utc_offset_hours,
            tables=TABLES,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (TableError, CalculationError) as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    duration_ms = (time.perf_counter() - start_time) * 1000.0
    events = result["events"]
    scales = result["time_scales"]

    response = SunMoonResponse(
        date=params.date,
        latitude=params.lat,
        longitude=params.lon,
        height_m=params.height_m,
        utc_offset_hours=params.utc_offset_hours,
        time_scales=TimeScaleModel(
            leap_second_count=scales.leap_second_count,
            dut1=scales.dut1,
            delta_t=scales.delta_t,
            source=scales.source,
        ),
        sunrise=_event_model(events["sun_rise"]),
        sun_transit=_event_model(events["sun_transit"]),
        sunset=_event_model(events["sun_set"]),
        moonrise=_event_model(events["moon_rise"]),
        moon_transit=_event_model(events["moon_transit"]),
        moonset=_event_model(events["moon_set"]),
    )

    LOGGER.info(
        json.dumps(
            {
                "event": "sunmoon",
                "lat": params.lat,
                "lon": params.lon,
                "date": params.date.isoformat(),
                "statuses": {key: event.status.value for key, event in events.items()},
                "duration_ms": round(duration_ms, 3),
            }
        )
    )
    return response
