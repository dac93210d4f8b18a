"""
Single-flight FIFO gate in front of one concurrency-limited provider.

- exactly one queued call runs at a time
- call starts are at least `min_interval` seconds apart
- a throttling failure opens a cooldown window; queued calls wait it out
- each caller resolves independently, one failure never fails another call

Construct one per provider per process and inject it where needed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import openai

from jobs.errors import ProviderThrottled

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLE_MARKERS = (
    "Error code: 429",
    "status code 429",
    "429 Too Many Requests",
    "CONCURRENT_LIMIT",
    "Concurrent Limit",
)


def is_throttling_error(exc: BaseException) -> bool:
    if isinstance(exc, (ProviderThrottled, openai.RateLimitError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    msg = str(exc)
    return any(marker in msg for marker in THROTTLE_MARKERS)


class CallSerializer:
    def __init__(
        self,
        name: str,
        min_interval: float = 1.0,
        cooldown_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        is_throttle: Callable[[BaseException], bool] = is_throttling_error,
    ) -> None:
        self.name = name
        self.min_interval = min_interval
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self._is_throttle = is_throttle

        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._drainer: asyncio.Task | None = None
        self._last_start: float | None = None
        self._cooldown_until = 0.0

    # ─────────────────────────────────────────────
    # introspection
    # ─────────────────────────────────────────────

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def busy(self) -> bool:
        return self._drainer is not None and not self._drainer.done()

    def remaining_cooldown(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def in_cooldown(self) -> bool:
        return self.remaining_cooldown() > 0

    def set_cooldown(self, seconds: float) -> None:
        self._cooldown_until = max(self._cooldown_until, self._clock() + seconds)
        logger.warning("[%s] cooldown %.0fs", self.name, seconds)

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "queueLength": self.queue_length,
            "busy": self.busy,
            "cooldownRemainingSeconds": round(self.remaining_cooldown(), 1),
        }

    # ─────────────────────────────────────────────
    # queue
    # ─────────────────────────────────────────────

    async def enqueue(self, work: Callable[[], Awaitable[T]]) -> T:
        """Queue `work` and wait for its own result (or exception)."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        self._queue.append((work, fut))

        if not self.busy:
            self._drainer = loop.create_task(self._drain())

        return await fut

    async def _wait_for_slot(self) -> None:
        # re-check after every sleep; a cooldown may open while we wait
        while True:
            wait = self.remaining_cooldown()
            if wait > 0:
                logger.info("[%s] in cooldown, waiting %.1fs", self.name, wait)
                await self._sleep(wait)
                continue
            if self._last_start is not None:
                gap = self.min_interval - (self._clock() - self._last_start)
                if gap > 0:
                    await self._sleep(gap)
                    continue
            return

    async def _drain(self) -> None:
        fut: asyncio.Future | None = None
        try:
            while self._queue:
                work, fut = self._queue.popleft()
                if fut.done():
                    # caller went away while queued
                    continue

                await self._wait_for_slot()
                if fut.done():
                    continue

                self._last_start = self._clock()
                logger.info("[%s] starting call, %d still queued", self.name, len(self._queue))

                try:
                    result = await work()
                except Exception as exc:
                    if self._is_throttle(exc):
                        self.set_cooldown(self.cooldown_seconds)
                    if not fut.done():
                        fut.set_exception(exc)
                except asyncio.CancelledError:
                    fut.cancel()
                    if asyncio.current_task().cancelling():
                        raise
                else:
                    if not fut.done():
                        fut.set_result(result)
        finally:
            # only reached with work left when the drainer itself was cancelled
            pending = [fut] if fut is not None else []
            pending += [f for _, f in self._queue]
            self._queue.clear()
            for f in pending:
                if not f.done():
                    f.cancel()
