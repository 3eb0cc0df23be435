"""
Tests for the scheduler module.

Validates tick handling, pass isolation and graceful shutdown.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config import settings
from src.pipeline.scheduler import Scheduler
from src.pipeline.updater import RefreshSummary


@pytest.fixture
def updater() -> MagicMock:
    mock = MagicMock()
    mock.run_scheduled_pass = AsyncMock(return_value=RefreshSummary())
    return mock


async def test_scheduler_init(updater):
    """Tick defaults to the configured interval."""
    scheduler = Scheduler(updater)

    assert scheduler.tick_seconds == settings.SCHEDULER_TICK_SECONDS
    assert scheduler.is_running
    assert scheduler.active_passes == 0


async def test_ticks_launch_passes(updater):
    scheduler = Scheduler(updater, tick_seconds=0.01)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.1)
    await scheduler.shutdown()
    await asyncio.wait_for(task, timeout=1)

    assert updater.run_scheduled_pass.await_count >= 2


async def test_no_pass_before_first_tick(updater):
    scheduler = Scheduler(updater, tick_seconds=60)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.01)
    await scheduler.shutdown()
    await asyncio.wait_for(task, timeout=1)

    updater.run_scheduled_pass.assert_not_awaited()
    assert not scheduler.is_running


async def test_failing_pass_does_not_stop_loop(updater):
    updater.run_scheduled_pass.side_effect = RuntimeError("store exploded")
    scheduler = Scheduler(updater, tick_seconds=0.01)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.1)
    assert not task.done()

    await scheduler.shutdown()
    await asyncio.wait_for(task, timeout=1)
    assert updater.run_scheduled_pass.await_count >= 2


async def test_slow_pass_does_not_delay_ticks(updater):
    """Passes run as tasks; a stuck pass still lets later ticks fire."""
    release = asyncio.Event()
    started = 0

    async def slow_pass():
        nonlocal started
        started += 1
        await release.wait()
        return RefreshSummary()

    updater.run_scheduled_pass = AsyncMock(side_effect=slow_pass)
    scheduler = Scheduler(updater, tick_seconds=0.01)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.1)
    assert started >= 2
    assert scheduler.active_passes >= 2

    await scheduler.shutdown()
    release.set()
    await asyncio.wait_for(task, timeout=1)

    assert scheduler.active_passes == 0


async def test_shutdown_waits_for_running_pass(updater):
    release = asyncio.Event()
    finished = False

    async def slow_pass():
        nonlocal finished
        await release.wait()
        finished = True
        return RefreshSummary()

    updater.run_scheduled_pass = AsyncMock(side_effect=slow_pass)
    scheduler = Scheduler(updater, tick_seconds=0.01)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.03)
    await scheduler.shutdown()
    await asyncio.sleep(0.01)
    assert not task.done()

    release.set()
    await asyncio.wait_for(task, timeout=1)
    assert finished


async def test_cancel_cancels_running_passes(updater):
    async def stuck_pass():
        await asyncio.Event().wait()

    updater.run_scheduled_pass = AsyncMock(side_effect=stuck_pass)
    scheduler = Scheduler(updater, tick_seconds=0.01)
    task = asyncio.create_task(scheduler.run())

    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert scheduler.active_passes == 0
