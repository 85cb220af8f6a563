"""FastAPI backend exposing highway charging dashboard data."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .analyze import compare_operators, resolve_pair
from .data import CHARGER_INFO_URL, fetch_chargers
from .filters import DEFAULT_RANGE_DAYS, FilterState, filter_view
from .logging_utils import setup_logging
from .loop import REFRESH_INTERVAL, RetrievalController, file_fetcher
from .report import build_dashboard, status_payload
from .stats import ESTIMATED_PRICE_PER_KWH
from .storage import SettingsStore

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Runtime configuration for the backend service."""

    settings_file: Path | None
    env_api_key: str | None
    api_url: str
    data_file: Path | None
    fetch_interval: int
    auto_fetch: bool
    request_timeout: float
    price_per_kwh: float
    cors_origins: list[str]
    debug: bool


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def load_settings() -> Settings:
    """Load backend configuration from environment variables."""

    settings_file_env = os.getenv("HIGHWAY_EV_SETTINGS_FILE")
    data_file_env = os.getenv("HIGHWAY_EV_DATA_FILE")
    cors_env = os.getenv("HIGHWAY_EV_CORS_ORIGINS", "*")
    cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

    return Settings(
        settings_file=Path(settings_file_env) if settings_file_env else None,
        env_api_key=os.getenv("HIGHWAY_EV_API_KEY") or None,
        api_url=os.getenv("HIGHWAY_EV_API_URL", CHARGER_INFO_URL),
        data_file=Path(data_file_env) if data_file_env else None,
        fetch_interval=int(os.getenv("HIGHWAY_EV_FETCH_INTERVAL", str(REFRESH_INTERVAL))),
        auto_fetch=_parse_bool(os.getenv("HIGHWAY_EV_AUTO_FETCH", "1"), True),
        request_timeout=float(os.getenv("HIGHWAY_EV_REQUEST_TIMEOUT", "30")),
        price_per_kwh=float(
            os.getenv("HIGHWAY_EV_PRICE_PER_KWH", str(ESTIMATED_PRICE_PER_KWH))
        ),
        cors_origins=cors_origins or ["*"],
        debug=_parse_bool(os.getenv("HIGHWAY_EV_DEBUG"), False),
    )


_INITIAL_SETTINGS = load_settings()

app = FastAPI(title="Highway Charging Dashboard API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_INITIAL_SETTINGS.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


class ApiKeyPayload(BaseModel):
    key: str


class ThemePayload(BaseModel):
    theme: str


def _make_controller(settings: Settings, store: SettingsStore) -> RetrievalController:
    if settings.data_file is not None:
        logger.info("Reading charger data from %s", settings.data_file)
        return RetrievalController(
            store, fetcher=file_fetcher(settings.data_file), require_key=False
        )

    def _fetch(api_key: str | None) -> Dict[str, Any]:
        return fetch_chargers(
            api_key, timeout=settings.request_timeout, url=settings.api_url
        )

    return RetrievalController(store, fetcher=_fetch)


def _can_poll(settings: Settings, store: SettingsStore) -> bool:
    if not settings.auto_fetch:
        return False
    return settings.data_file is not None or store.load_api_key() is not None


async def _fetch_once() -> None:
    controller: RetrievalController = app.state.controller
    try:
        await asyncio.to_thread(controller.refresh)
    except Exception:  # pragma: no cover - defensive logging
        logger.exception("Charger data fetch failed")
    app.state.last_fetch = datetime.now().astimezone().isoformat(timespec="seconds")


async def _fetch_loop(settings: Settings) -> None:
    logger.info("Starting fetch loop with interval %ss", settings.fetch_interval)
    try:
        while True:
            await asyncio.sleep(max(settings.fetch_interval, 1))
            await _fetch_once()
    except asyncio.CancelledError:
        logger.debug("Fetch loop cancelled")
        raise


def _start_fetch_loop(settings: Settings) -> None:
    task: asyncio.Task | None = getattr(app.state, "fetch_task", None)
    if task is not None and not task.done():
        return
    app.state.fetch_task = asyncio.create_task(_fetch_loop(settings))


async def _stop_fetch_loop() -> None:
    task: asyncio.Task | None = getattr(app.state, "fetch_task", None)
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    finally:
        app.state.fetch_task = None


@app.on_event("startup")
async def on_startup() -> None:
    settings = load_settings()
    setup_logging(settings.debug)
    logger.debug("Loaded settings: %s", settings)
    app.state.settings = settings
    if settings.cors_origins != _INITIAL_SETTINGS.cors_origins:
        logger.warning(
            "CORS origin configuration changed to %s after startup; restart required for changes to apply.",
            settings.cors_origins,
        )
    store = SettingsStore(settings.settings_file, env_api_key=settings.env_api_key)
    app.state.store = store
    app.state.controller = _make_controller(settings, store)
    app.state.fetch_task = None
    app.state.last_fetch = None
    if settings.auto_fetch:
        await _fetch_once()
    if _can_poll(settings, store):
        _start_fetch_loop(settings)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await _stop_fetch_loop()


def _require_settings() -> Settings:
    settings = getattr(app.state, "settings", None)
    if settings is None:  # pragma: no cover - startup should populate
        raise HTTPException(status_code=503, detail="Service not initialised")
    return settings


def _status() -> Dict[str, Any]:
    controller: RetrievalController = app.state.controller
    return status_payload(controller.state, controller.snapshot)


def _filters(
    start: date | None,
    end: date | None,
    operator: List[str] | None,
    highway: List[str] | None,
    all_dates: bool,
) -> FilterState:
    if start and end and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    if start is None and end is None and not all_dates:
        default = FilterState.last_days(DEFAULT_RANGE_DAYS)
        return FilterState(
            start=default.start,
            end=default.end,
            operators=frozenset(operator or ()),
            highways=frozenset(highway or ()),
        )
    return FilterState.from_query(start, end, operator, highway)


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    settings = _require_settings()
    return {
        "status": "ok",
        "auto_fetch": settings.auto_fetch,
        "polling": getattr(app.state, "fetch_task", None) is not None,
        "last_fetch": getattr(app.state, "last_fetch", None),
    }


@app.get("/api/status")
async def status() -> Dict[str, Any]:
    _require_settings()
    return _status()


@app.get("/api/dashboard")
async def dashboard(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    operator: Optional[List[str]] = Query(None),
    highway: Optional[List[str]] = Query(None),
    all_dates: bool = Query(False),
) -> Dict[str, Any]:
    settings = _require_settings()
    filters = _filters(start, end, operator, highway, all_dates)
    controller: RetrievalController = app.state.controller
    snapshot = controller.snapshot
    sessions = snapshot.sessions if snapshot is not None else ()
    total = snapshot.total_count if snapshot is not None else 0
    data = await asyncio.to_thread(
        build_dashboard, sessions, filters, total, price_per_kwh=settings.price_per_kwh
    )
    data["status"] = status_payload(controller.state, snapshot)
    return data


@app.get("/api/sessions")
async def sessions(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    operator: Optional[List[str]] = Query(None),
    highway: Optional[List[str]] = Query(None),
    all_dates: bool = Query(False),
    limit: int = Query(5000, ge=1, le=20000),
) -> Dict[str, Any]:
    _require_settings()
    filters = _filters(start, end, operator, highway, all_dates)
    controller: RetrievalController = app.state.controller
    filtered, operators = filter_view(controller.sessions, filters)
    return {
        "filters": filters.to_dict(),
        "operators": operators,
        "count": len(filtered),
        "sessions": [s.to_dict() for s in filtered[:limit]],
    }


@app.get("/api/compare")
async def compare(
    first: Optional[str] = Query(None),
    second: Optional[str] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    operator: Optional[List[str]] = Query(None),
    highway: Optional[List[str]] = Query(None),
    all_dates: bool = Query(False),
) -> Dict[str, Any]:
    _require_settings()
    filters = _filters(start, end, operator, highway, all_dates)
    controller: RetrievalController = app.state.controller
    filtered, operators = filter_view(controller.sessions, filters)
    result = compare_operators(filtered, *resolve_pair(filtered, first, second))
    result["available_operators"] = operators
    return result


@app.post("/api/refresh")
async def refresh() -> Dict[str, Any]:
    """Run one fetch cycle now and return the state it ended in."""
    _require_settings()
    await _fetch_once()
    return _status()


@app.get("/api/settings/api-key")
async def get_api_key() -> Dict[str, Any]:
    _require_settings()
    store: SettingsStore = app.state.store
    key = store.load_api_key()
    if key is None:
        raise HTTPException(status_code=404, detail="No API key configured")
    return {"configured": True, "masked": key[:4] + "*" * max(len(key) - 4, 0)}


@app.put("/api/settings/api-key")
async def put_api_key(payload: ApiKeyPayload) -> Dict[str, Any]:
    settings = _require_settings()
    store: SettingsStore = app.state.store
    try:
        store.save_api_key(payload.key)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info("API key updated; refreshing charger data")
    await _fetch_once()
    if _can_poll(settings, store):
        _start_fetch_loop(settings)
    return _status()


@app.delete("/api/settings/api-key")
async def delete_api_key() -> Dict[str, Any]:
    _require_settings()
    store: SettingsStore = app.state.store
    store.clear_api_key()
    await _stop_fetch_loop()
    await _fetch_once()
    return _status()


@app.get("/api/settings/theme")
async def get_theme() -> Dict[str, str]:
    _require_settings()
    store: SettingsStore = app.state.store
    return {"theme": store.load_theme()}


@app.put("/api/settings/theme")
async def put_theme(payload: ThemePayload) -> Dict[str, str]:
    _require_settings()
    store: SettingsStore = app.state.store
    try:
        store.save_theme(payload.theme)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"theme": store.load_theme()}


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import uvicorn

    uvicorn.run(
        "highway_charging.api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
