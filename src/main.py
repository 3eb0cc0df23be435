"""
Universalis Tracker - Application Entrypoint

Configures structlog, opens the item store, loads the catalog, wires the
fetch queue, upstream client, updater and scheduler together, and serves the
REST API. The scheduler and cold-start population run inside the API
lifespan, so uvicorn's signal handling shuts everything down together.

Run via:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog
import uvicorn

from src.api.app import create_app
from src.config import settings
from src.pipeline.catalog import load_catalog
from src.pipeline.fetch_queue import RateLimitedFetchQueue
from src.pipeline.scheduler import Scheduler
from src.pipeline.universalis import UniversalisClient
from src.pipeline.updater import ItemUpdater
from src.storage.item_store import SqlItemStore


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    # Configure stdlib logging first (for uvicorn, httpx, sqlalchemy)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Application entrypoint.

    Execution order:
    1. Configure logging (structlog JSON)
    2. Open the item store (creates the schema if missing)
    3. Verify the store (health check)
    4. Load the catalog
    5. Serve the API; its lifespan starts population and the scheduler
    """
    _configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("universalis_tracker_startup_begin", version="0.1.0", world=settings.WORLD_NAME)

    store = SqlItemStore(settings.DATABASE_URL)
    try:
        await store.initialize()
    except Exception as e:
        logger.error(
            "item_store_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        stored = await store.count()
        logger.info("item_store_health_check_passed", stored_items=stored)

        try:
            catalog = load_catalog(settings.CATALOG_PATH)
        except (OSError, ValueError) as e:
            logger.error(
                "catalog_load_failed",
                path=settings.CATALOG_PATH,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        queue = RateLimitedFetchQueue()
        async with UniversalisClient(queue) as client:
            updater = ItemUpdater(store, catalog, client)
            scheduler = Scheduler(updater)
            app = create_app(updater, scheduler)

            logger.info(
                "universalis_tracker_startup_complete",
                catalog_items=len(catalog),
                host=settings.HOST,
                port=settings.PORT,
                tick_seconds=scheduler.tick_seconds,
            )

            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=settings.HOST,
                    port=settings.PORT,
                    log_level=settings.LOG_LEVEL.lower(),
                )
            )
            await server.serve()

    except Exception as e:
        logger.error(
            "universalis_tracker_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await store.close()
        logger.info("universalis_tracker_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
