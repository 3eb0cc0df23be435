"""
Universalis Tracker - REST API

Thin read-only HTTP layer over ItemUpdater for the dashboard.

Endpoints:
  GET /health                  -> liveness + configured world
  GET /api/stats               -> per-tier counts and refresh cadences
  GET /api/items               -> all items (?classification=hot|mild|cold)
  GET /api/items/batch/{ids}   -> several items, ids comma-separated
  GET /api/items/{id}          -> one item

Every body carries "success"; failures add "error". Upstream failures never
surface here: the API serves whatever the store holds, placeholders included.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import Tier
from src.engine.classifier import interval_for
from src.models.records import ItemRecord
from src.pipeline.scheduler import Scheduler
from src.pipeline.updater import ItemUpdater
from src.utils.durations import humanize_interval

logger = structlog.get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _parse_id(raw: str) -> int:
    """Raises ValueError for anything that is not a base-10 integer."""
    return int(raw.strip(), 10)


def _dump(items: list[ItemRecord]) -> list[dict[str, Any]]:
    return [item.to_api() for item in items]


def create_app(
    updater: ItemUpdater,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    With a scheduler, the lifespan kicks off cold-start population and the
    tick loop, and stops both on shutdown. Without one (tests, read-only
    deployments) the app only serves reads.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler_task: asyncio.Task | None = None
        population_task: asyncio.Task | None = None

        if scheduler is not None:
            population_task = updater.start_initial_population()
            scheduler_task = asyncio.create_task(scheduler.run())

        logger.info(
            "api_ready",
            world=updater.world_name,
            scheduler_enabled=scheduler is not None,
        )
        try:
            yield
        finally:
            if scheduler is not None and scheduler_task is not None:
                await scheduler.shutdown()
                await scheduler_task
            if population_task is not None and not population_task.done():
                population_task.cancel()
                with suppress(asyncio.CancelledError):
                    await population_task
            logger.info("api_stopped")

    app = FastAPI(title="Universalis Tracker API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "api_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "api_unhandled_error",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return _error(500, str(exc) or "Internal server error")

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "worldName": updater.world_name,
        }

    @app.get("/api/stats")
    async def stats():
        counts = await updater.get_stats()
        return {
            "success": True,
            "stats": counts,
            "updateIntervals": {
                tier.value: humanize_interval(interval_for(tier))
                for tier in (Tier.HOT, Tier.MILD, Tier.COLD)
            },
        }

    @app.get("/api/items")
    async def list_items(classification: str | None = None):
        if classification:
            items = await updater.get_items_by_classification(classification)
        else:
            items = await updater.get_all_items()
        return {"success": True, "count": len(items), "items": _dump(items)}

    @app.get("/api/items/batch/{ids}")
    async def get_batch(ids: str):
        try:
            item_ids = [_parse_id(raw) for raw in ids.split(",")]
        except ValueError:
            return _error(400, "Invalid item IDs")

        items = await updater.get_items(item_ids)
        return {
            "success": True,
            "count": len(items),
            "requested": len(item_ids),
            "items": _dump(items),
        }

    @app.get("/api/items/{item_id}")
    async def get_item(item_id: str):
        try:
            parsed = _parse_id(item_id)
        except ValueError:
            return _error(400, "Invalid item ID")

        item = await updater.get_item(parsed)
        if item is None:
            return _error(404, "Item not found")
        return {"success": True, "item": item.to_api()}

    app.state.updater = updater
    app.state.scheduler = scheduler
    return app
