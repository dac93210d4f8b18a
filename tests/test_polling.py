# tests/test_polling.py
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from jobs.errors import StageCancelled, StageFailure
from services.polling import CancelToken, TaskStatus, poll_until_done


@pytest.mark.asyncio
async def test_keeps_polling_until_succeeded():
    fetch = AsyncMock(side_effect=[
        TaskStatus("PENDING"),
        TaskStatus("RUNNING"),
        TaskStatus("SUCCEEDED", result_url="https://cdn.example/out.png"),
    ])

    done = await poll_until_done("outpaint", fetch, interval=0, max_attempts=5)

    assert done.result_url == "https://cdn.example/out.png"
    assert fetch.await_count == 3


@pytest.mark.asyncio
async def test_provider_failure_is_a_stage_failure():
    fetch = AsyncMock(return_value=TaskStatus("FAILED", message="InvalidParameter"))

    with pytest.raises(StageFailure, match="InvalidParameter") as exc_info:
        await poll_until_done("upscale", fetch, interval=0)
    assert exc_info.value.stage == "upscale"


@pytest.mark.asyncio
async def test_poll_budget_exhaustion_times_out():
    fetch = AsyncMock(return_value=TaskStatus("RUNNING"))

    with pytest.raises(StageFailure, match="timed out after 3 polls"):
        await poll_until_done("outpaint", fetch, interval=0, max_attempts=3)
    assert fetch.await_count == 3


@pytest.mark.asyncio
async def test_cancel_token_stops_polling():
    token = CancelToken()
    fetch = AsyncMock(return_value=TaskStatus("RUNNING"))

    async def fetch_then_cancel():
        token.cancel()
        return await fetch()

    with pytest.raises(StageCancelled):
        await poll_until_done("outpaint", fetch_then_cancel, interval=30, max_attempts=30, token=token)
    assert fetch.await_count == 1


@pytest.mark.asyncio
async def test_token_wait_times_out_without_cancel():
    token = CancelToken()
    assert await token.wait(0.01) is False
    token.cancel()
    assert await token.wait(10) is True
