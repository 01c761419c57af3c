"""
FastAPI app for the dose tracker.

Endpoints:
- GET  /exec?action=get | ensureHeaders
- POST /exec?action=add | remove
- GET  /rate, PUT /rate
- GET  /projection

/exec speaks the same action protocol as the spreadsheet web app the
browser front end was written against, so either can sit behind it.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

# --- Make src/ importable ----------------------------------------------------

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from dose_tracker.config import Config, get_config
from dose_tracker.data_io import (
    get_event_store,
    load_rate_settings,
    save_rate_settings,
)
from dose_tracker.dosage_model import project
from dose_tracker.logging_config import setup_logging
from dose_tracker.schema import AnchorMode, RateSettings
from dose_tracker.sheet_client import SheetClientError
from dose_tracker.timing import format_time_offset, parse_instant, resolve_time_zone

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    yield


app = FastAPI(title="Dose Tracker API", lifespan=lifespan)


# --- Dependencies ------------------------------------------------------------


def get_app_config() -> Config:
    return get_config()


class UnavailableStore:
    """Stands in for an event store that could not be built; every call fails."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def _fail(self, *args, **kwargs):
        raise RuntimeError(f"Event store unavailable: {self.error}")

    fetch_events = append_event = remove_event = ensure_headers = _fail


def get_store(config: Config = Depends(get_app_config)):
    try:
        return get_event_store(config)
    except (SheetClientError, ImportError, ValueError) as e:
        logger.error("Could not build the %s event store: %s", config.store_backend, e)
        return UnavailableStore(e)


def get_rate_settings_path(config: Config = Depends(get_app_config)) -> Path:
    return Path(config.rate_settings_path)


# --- Action handlers ---------------------------------------------------------


def handle_get_data(store) -> Dict[str, Any]:
    records = store.fetch_events()
    return {"success": True, "data": [r.to_dict() for r in records]}


def handle_ensure_headers(store) -> Dict[str, Any]:
    changed, message = store.ensure_headers()
    return {"success": True, "message": message, "headersChanged": changed}


def handle_add_data(store, date: Optional[str], float_value: Optional[str]) -> Dict[str, Any]:
    if not date or float_value is None:
        return {"success": False, "error": "Missing 'date' or 'floatValue' parameter."}

    try:
        result = store.append_event(float_value, date)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    if not result:
        return {"success": False, "error": "Failed to add data."}
    return {"success": True, "message": "Data added successfully."}


def handle_remove_data(store, date: Optional[str]) -> Dict[str, Any]:
    if not date:
        return {"success": False, "error": "Missing 'date' parameter for remove action."}

    try:
        removed = store.remove_event(date)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    if removed:
        return {"success": True, "removed": True, "message": f"Data for date '{date}' removed."}
    return {"success": True, "removed": False, "message": f"No data found for date '{date}'."}


# --- Request / Response schemas ----------------------------------------------


class RatePayload(BaseModel):
    """
    Input payload for PUT /rate.

    The rate is pills_per_interval / hours_per_interval; a missing value
    or hours_per_interval == 0 gives a rate of 0.
    """

    pills_per_interval: Optional[float] = None
    hours_per_interval: Optional[float] = None


class RateResponse(BaseModel):
    pills_per_interval: Optional[float]
    hours_per_interval: Optional[float]
    rate: float


class PointPayload(BaseModel):
    at: str
    deficit: float


class ProjectionResponse(BaseModel):
    rate: float
    now: str
    anchor: str
    curve: List[PointPayload]
    stats: dict
    display: dict
    warning: Optional[str] = None


def _rate_response(settings: RateSettings) -> RateResponse:
    def _num(value: Any) -> Optional[float]:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    return RateResponse(
        pills_per_interval=_num(settings.pills_per_interval),
        hours_per_interval=_num(settings.hours_per_interval),
        rate=settings.rate,
    )


# --- Endpoints ---------------------------------------------------------------


@app.get("/exec")
def exec_get(action: Optional[str] = None, store=Depends(get_store)) -> dict:
    """
    Read actions of the sheet protocol.

    /exec?action=get            -> {"success": true, "data": [{"date": ..., "value": ...}]}
    /exec?action=ensureHeaders  -> {"success": true, "message": ..., "headersChanged": ...}
    """
    try:
        if action == "get":
            return handle_get_data(store)
        if action == "ensureHeaders":
            return handle_ensure_headers(store)
        return {"success": False, "error": f"Invalid action '{action}' for GET request."}
    except Exception as e:
        logger.exception("Critical error in GET /exec")
        return {"success": False, "error": f"A server error occurred in doGet: {e}"}


@app.post("/exec")
def exec_post(
    action: Optional[str] = None,
    date: Optional[str] = None,
    floatValue: Optional[str] = None,
    store=Depends(get_store),
) -> dict:
    """
    Write actions of the sheet protocol (parameters in the query string).

    /exec?action=add&date=2025-03-14T08:30:00+00:00&floatValue=1
    /exec?action=remove&date=2025-03-14T08:30:00+00:00
    """
    try:
        if action == "add":
            return handle_add_data(store, date, floatValue)
        if action == "remove":
            return handle_remove_data(store, date)
        return {"success": False, "error": f"Invalid action '{action}' for POST request."}
    except Exception as e:
        logger.exception("Critical error in POST /exec")
        return {"success": False, "error": f"A server error occurred in doPost: {e}"}


@app.get("/rate", response_model=RateResponse)
def get_rate(path: Path = Depends(get_rate_settings_path)) -> RateResponse:
    return _rate_response(load_rate_settings(path))


@app.put("/rate", response_model=RateResponse)
def put_rate(
    payload: RatePayload, path: Path = Depends(get_rate_settings_path)
) -> RateResponse:
    """
    Persist new rate inputs.

    Body example:
    {
      "pills_per_interval": 1,
      "hours_per_interval": 12
    }
    """
    settings = RateSettings(
        pills_per_interval=payload.pills_per_interval,
        hours_per_interval=payload.hours_per_interval,
    )
    save_rate_settings(settings, path)
    logger.info("Rate set to %s units/hour", settings.rate)
    return _rate_response(settings)


@app.get("/projection", response_model=ProjectionResponse)
def get_projection(
    now: Optional[str] = None,
    store=Depends(get_store),
    path: Path = Depends(get_rate_settings_path),
    config: Config = Depends(get_app_config),
) -> ProjectionResponse:
    """
    Deficit curve and statistics for the stored timeline.

    `now` (ISO-8601) defaults to the current time. If the store cannot be
    read the projection is computed over an empty timeline and `warning`
    says why.
    """
    if now is None:
        now_dt = datetime.now(timezone.utc)
    else:
        now_dt = parse_instant(now)
        if now_dt is None:
            raise HTTPException(status_code=400, detail=f"Invalid 'now': {now!r}")

    warning = None
    try:
        events = store.fetch_events()
    except Exception as e:
        logger.error("Could not load events: %s", e)
        events = []
        warning = f"Could not load events: {e}"

    settings = load_rate_settings(path)
    projection = project(
        settings.rate, events, now_dt, anchor=AnchorMode(config.anchor_mode)
    )

    tz = resolve_time_zone(config.time_zone)
    stats = projection.stats
    display = {
        "time_zone": config.time_zone,
        "half_unit_owed_time": (
            format_time_offset(stats.hours_until_half_unit_owed, now_dt, tz)
            if stats.half_unit_owed_at is not None
            else None
        ),
        "full_unit_owed_time": (
            format_time_offset(stats.hours_until_full_unit_owed, now_dt, tz)
            if stats.full_unit_owed_at is not None
            else None
        ),
    }

    body = projection.to_dict()
    return ProjectionResponse(
        rate=body["rate"],
        now=body["now"],
        anchor=body["anchor"],
        curve=[PointPayload(**p) for p in body["curve"]],
        stats=body["stats"],
        display=display,
        warning=warning,
    )


# Convenience for local dev:
# uvicorn app.api:app --reload
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.api:app", host="0.0.0.0", port=8000, reload=True)
