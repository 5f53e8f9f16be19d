"""FastAPI application exposing cached series and manual refresh."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import pandas as pd
from dateutil import parser
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from uvicorn import Config, Server

from trends.errors import ConfigurationError
from trends.manager import SeriesManager

from .data_access import build_series_response, list_summaries
from .schemas import RefreshResponse, SeriesListResponse, SeriesResponse

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def parse_iso(dt_str: Optional[str]) -> Optional[pd.Timestamp]:
    if not dt_str:
        return None
    try:
        parsed = parser.isoparse(dt_str)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid timestamp: {dt_str}") from exc
    ts = pd.Timestamp(parsed)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def get_manager(request: Request) -> SeriesManager:
    return request.app.state.manager


def _known(manager: SeriesManager, key: str) -> None:
    try:
        manager.find(key)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/series", response_model=SeriesListResponse)
async def api_series(request: Request) -> SeriesListResponse:
    summaries = await run_in_threadpool(list_summaries, get_manager(request))
    return SeriesListResponse(series=summaries)


@router.get("/series/{key}", response_model=SeriesResponse)
async def api_series_window(
    request: Request,
    key: str,
    at: Optional[str] = Query(None, description="ISO-8601 instant the display window ends at"),
) -> SeriesResponse:
    manager = get_manager(request)
    await run_in_threadpool(_known, manager, key)
    config, samples = await run_in_threadpool(manager.snapshot, key, parse_iso(at))
    response = build_series_response(key, config, samples)
    if key in manager.open_keys:
        scheduler = manager.scheduler(key)
        response.meta["state"] = scheduler.state.value
        response.meta["error"] = scheduler.error_message
    return response


@router.post("/series/{key}/refresh", response_model=RefreshResponse)
async def api_series_refresh(request: Request, key: str) -> RefreshResponse:
    manager = get_manager(request)
    await run_in_threadpool(_known, manager, key)
    if manager.is_fetching(key):
        _, samples = await run_in_threadpool(manager.snapshot, key)
        return RefreshResponse(
            key=key, ok=False, skipped=True, error="refresh already running", samples=len(samples)
        )
    error = await manager.refresh(key)
    _, samples = await run_in_threadpool(manager.snapshot, key)
    if error is not None:
        LOGGER.warning("Manual refresh of '%s' failed: %s", key, error)
    return RefreshResponse(
        key=key,
        ok=error is None,
        error=str(error) if error is not None else None,
        samples=len(samples),
    )


def create_app(manager: SeriesManager, *, poll: bool = False) -> FastAPI:
    """Build the API; with ``poll`` every series is refreshed for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if poll:
            await manager.open_all()
        try:
            yield
        finally:
            await manager.close_all()

    app = FastAPI(title="Trend cache API", lifespan=lifespan)
    app.state.manager = manager
    app.include_router(router)

    @app.get("/", include_in_schema=False)
    async def root_redirect() -> RedirectResponse:
        return RedirectResponse(url="/api/series")

    return app


def start_ui(host: str, port: int, *, manager: SeriesManager, poll: bool = True) -> None:
    """Start the API server via uvicorn."""

    config = Config(app=create_app(manager, poll=poll), host=host, port=port, log_level="info")
    server = Server(config=config)
    asyncio.run(server.serve())
