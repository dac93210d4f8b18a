"""
Cancellable, deadline-bound waiting for provider poll loops.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from jobs.errors import StageCancelled, StageFailure

logger = logging.getLogger(__name__)


class CancelToken:
    """One per in-flight job. Setting it interrupts any wait on it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise StageCancelled(stage, "cancelled")

    async def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True if cancelled meanwhile."""
        if timeout <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class TaskStatus:
    status: str  # PENDING | RUNNING | SUCCEEDED | FAILED | ...
    result_url: str | None = None
    message: str | None = None
    raw: dict[str, Any] | None = None


async def poll_until_done(
    stage: str,
    fetch: Callable[[], Awaitable[TaskStatus]],
    *,
    interval: float = 2.0,
    max_attempts: int = 30,
    token: CancelToken | None = None,
) -> TaskStatus:
    """
    Poll `fetch` until the task reports SUCCEEDED or FAILED.
    Any other status keeps polling. Running out of attempts is a
    StageFailure, never an indefinite hang.
    """
    token = token or CancelToken()

    for attempt in range(1, max_attempts + 1):
        token.raise_if_cancelled(stage)

        status = await fetch()
        logger.debug("%s poll %d/%d status=%s", stage, attempt, max_attempts, status.status)

        if status.status == "SUCCEEDED":
            return status
        if status.status == "FAILED":
            raise StageFailure(stage, f"provider task failed: {status.message or 'unknown error'}")

        if attempt < max_attempts and await token.wait(interval):
            raise StageCancelled(stage, "cancelled while polling")

    raise StageFailure(stage, f"timed out after {max_attempts} polls")
