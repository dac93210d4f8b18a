# tests/test_call_serializer.py
from __future__ import annotations

import asyncio

import pytest

from jobs.errors import ProviderThrottled
from services.call_serializer import CallSerializer, is_throttling_error


class FakeTime:
    """Deterministic clock; sleeping just advances it."""

    def __init__(self) -> None:
        self.now = 0.0

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


def _serializer(t: FakeTime, **kwargs) -> CallSerializer:
    return CallSerializer("test", clock=t.clock, sleep=t.sleep, **kwargs)


@pytest.mark.asyncio
async def test_calls_never_overlap_and_are_spaced():
    t = FakeTime()
    ser = _serializer(t, min_interval=1.0)
    starts: list[float] = []
    running = 0
    max_running = 0

    def make_work(i: int):
        async def work():
            nonlocal running, max_running
            starts.append(t.now)
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            running -= 1
            return i
        return work

    results = await asyncio.gather(*(ser.enqueue(make_work(i)) for i in range(5)))

    assert results == [0, 1, 2, 3, 4]
    assert max_running == 1
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(g >= 1.0 for g in gaps)


@pytest.mark.asyncio
async def test_throttle_opens_cooldown_before_next_start():
    t = FakeTime()
    ser = _serializer(t, min_interval=1.0, cooldown_seconds=60.0)
    starts: list[float] = []

    async def throttled():
        starts.append(t.now)
        raise ProviderThrottled("backgroundReplace", "429 Too Many Requests")

    async def ok():
        starts.append(t.now)
        return "ok"

    first, second = await asyncio.gather(
        ser.enqueue(throttled), ser.enqueue(ok), return_exceptions=True
    )

    assert isinstance(first, ProviderThrottled)
    assert second == "ok"
    assert starts[1] - starts[0] >= 60.0


@pytest.mark.asyncio
async def test_one_failure_does_not_fail_other_calls():
    t = FakeTime()
    ser = _serializer(t)

    async def broken():
        raise ValueError("bad image")

    async def fine():
        return 42

    results = await asyncio.gather(
        ser.enqueue(broken), ser.enqueue(fine), ser.enqueue(fine), return_exceptions=True
    )

    assert isinstance(results[0], ValueError)
    assert results[1:] == [42, 42]
    # an ordinary error is not throttling
    assert not ser.in_cooldown()


@pytest.mark.asyncio
async def test_snapshot_reports_cooldown():
    t = FakeTime()
    ser = _serializer(t)
    ser.set_cooldown(30)
    snap = ser.snapshot()
    assert snap["queueLength"] == 0
    assert snap["cooldownRemainingSeconds"] == 30.0


def test_throttle_detection():
    assert is_throttling_error(ProviderThrottled("outpaint", "slow down"))
    assert is_throttling_error(RuntimeError("Error code: 429"))
    assert is_throttling_error(RuntimeError("Throttling: CONCURRENT_LIMIT exceeded"))
    assert not is_throttling_error(RuntimeError("invalid image"))


@pytest.mark.asyncio
async def test_cancelled_call_resolves_its_caller_and_queue_keeps_draining():
    t = FakeTime()
    ser = _serializer(t)

    async def aborted():
        raise asyncio.CancelledError()

    async def fine():
        return "ok"

    first = asyncio.ensure_future(ser.enqueue(aborted))
    second = asyncio.ensure_future(ser.enqueue(fine))

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(first, timeout=5)
    assert await asyncio.wait_for(second, timeout=5) == "ok"
    assert not ser.in_cooldown()


@pytest.mark.asyncio
async def test_cancelled_drainer_releases_queued_callers():
    t = FakeTime()
    ser = _serializer(t)
    started = asyncio.Event()

    async def hangs():
        started.set()
        await asyncio.Event().wait()

    async def fine():
        return "ok"

    first = asyncio.ensure_future(ser.enqueue(hangs))
    second = asyncio.ensure_future(ser.enqueue(fine))
    await asyncio.wait_for(started.wait(), timeout=5)

    ser._drainer.cancel()

    for caller in (first, second):
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(caller, timeout=5)
    assert ser.queue_length == 0


def test_status_digits_inside_other_text_are_not_throttling():
    assert not is_throttling_error(RuntimeError("image too large: 1429px wide"))
    assert not is_throttling_error(RuntimeError("task 4291 failed"))
    assert is_throttling_error(RuntimeError("429 Too Many Requests"))
