"""
Universalis Tracker - Rate-Limited Fetch Queue

Serializes every outbound call to the upstream API so that calls are never
issued closer together than base_delay + uniform(0, jitter_max) seconds,
measured from the completion of the previous call.

Callers do not coordinate: they enqueue a zero-argument coroutine function and
await the returned future. One drain task runs the queue in FIFO order. A
failing request rejects only its own future; the queue moves on to the next.
The jitter keeps this client from falling into lockstep with other clients
polling the same endpoint.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable

import structlog

from src.config import settings

logger = structlog.get_logger(__name__)

RequestFn = Callable[[], Awaitable[Any]]


class RateLimitedFetchQueue:
    """
    FIFO request queue with a single drain loop and randomized spacing.

    Usage:
        queue = RateLimitedFetchQueue()
        data = await queue.enqueue(lambda: client.get(url), batch_size=len(ids))

    The clock, sleep and jitter hooks exist so tests can drive the queue
    with a fake clock instead of waiting in real time.
    """

    def __init__(
        self,
        base_delay: float | None = None,
        jitter_max: float | None = None,
        max_batch_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._base_delay = (
            base_delay if base_delay is not None else settings.FETCH_BASE_DELAY_SECONDS
        )
        self._jitter_max = (
            jitter_max if jitter_max is not None else settings.FETCH_JITTER_MAX_SECONDS
        )
        self._max_batch_size = (
            max_batch_size
            if max_batch_size is not None
            else settings.UNIVERSALIS_MAX_ITEMS_PER_CALL
        )
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter

        self._pending: deque[tuple[RequestFn, asyncio.Future]] = deque()
        self._drain_task: asyncio.Task | None = None
        self._last_request_at: float | None = None

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    @property
    def pending(self) -> int:
        """Requests waiting to run (excludes the one currently running)."""
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, request: RequestFn, batch_size: int | None = None) -> asyncio.Future:
        """
        Queue a request and return a future for its result.

        Raises:
            ValueError: batch_size exceeds the upstream per-call maximum.
                Raised synchronously; nothing is queued.
        """
        if batch_size is not None and batch_size > self._max_batch_size:
            raise ValueError(
                f"Cannot fetch more than {self._max_batch_size} items in a single API call"
            )

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append((request, future))
        self._start_draining()
        return future

    def _start_draining(self) -> None:
        if self.is_draining:
            return
        self._drain_task = asyncio.create_task(self._drain())

    def _required_delay(self) -> float:
        extra = self._jitter(0, self._jitter_max) if self._jitter_max > 0 else 0.0
        return self._base_delay + extra

    async def _drain(self) -> None:
        while self._pending:
            request, future = self._pending.popleft()
            if future.done():
                # Caller cancelled before its turn
                continue

            if self._last_request_at is not None:
                required = self._required_delay()
                elapsed = self._clock() - self._last_request_at
                if elapsed < required:
                    wait = required - elapsed
                    logger.debug(
                        "fetch_queue_delay",
                        wait_seconds=round(wait, 3),
                        pending=len(self._pending),
                    )
                    await self._sleep(wait)

            try:
                result = await request()
            except Exception as e:
                self._last_request_at = self._clock()
                if not future.done():
                    future.set_exception(e)
                continue

            self._last_request_at = self._clock()
            if not future.done():
                future.set_result(result)
