"""
Universalis Tracker - Refresh Scheduler

Fires a scheduled refresh pass on a fixed tick (default 60 seconds). Each
pass asks the updater for every item whose next_update has passed and
refreshes them through the shared fetch queue.

Passes are launched as tasks so a slow pass never delays the next tick.
Overlapping passes skip ids that are already in flight; the fetch queue
keeps upstream calls spaced regardless of how many passes are running.
"""

from __future__ import annotations

import asyncio

import structlog

from src.config import settings
from src.pipeline.updater import ItemUpdater

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Async tick loop driving ItemUpdater.run_scheduled_pass().

    Usage:
        scheduler = Scheduler(updater)
        task = asyncio.create_task(scheduler.run())
        ...
        await scheduler.shutdown()
        await task
    """

    def __init__(self, updater: ItemUpdater, tick_seconds: float | None = None):
        self.updater = updater
        self.tick_seconds = (
            tick_seconds if tick_seconds is not None else settings.SCHEDULER_TICK_SECONDS
        )
        self._shutdown_event = asyncio.Event()
        self._passes: set[asyncio.Task] = set()
        self._tick_count = 0

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()

    @property
    def active_passes(self) -> int:
        return len(self._passes)

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        logger.info("scheduler_shutdown_requested")
        self._shutdown_event.set()

    async def _run_pass(self, tick: int) -> None:
        try:
            await self.updater.run_scheduled_pass()
        except Exception as e:
            logger.error(
                "scheduler_pass_failed",
                tick=tick,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _launch_pass(self) -> asyncio.Task:
        self._tick_count += 1
        task = asyncio.create_task(self._run_pass(self._tick_count))
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled.

        The first pass fires one tick after start; the initial population
        covers the catalog before then.
        """
        logger.info("scheduler_started", tick_seconds=self.tick_seconds)

        try:
            while not self._shutdown_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.tick_seconds,
                    )
                except asyncio.TimeoutError:
                    # No shutdown signal within the tick: time for a pass
                    self._launch_pass()

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            for task in list(self._passes):
                task.cancel()
            raise
        finally:
            if self._passes:
                await asyncio.gather(*self._passes, return_exceptions=True)
            logger.info("scheduler_stopped", ticks=self._tick_count)

