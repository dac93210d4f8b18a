# tests/test_dashscope.py
"""
DashScope client against a mocked transport: submit, poll, download.
"""
from __future__ import annotations

import io
import json

import httpx
import pytest
from PIL import Image

from api.app.config import Settings
from jobs.errors import ProviderThrottled, StageFailure
from services.dashscope import DashScopeClient


def _settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite+aiosqlite:///:memory:",
        dashscope_api_key="test-key",
        poll_interval_seconds=0,
        poll_max_attempts=5,
    )
    values.update(overrides)
    return Settings(**values)


def _transport(png: bytes, statuses: list[str], submit_status: int = 200):
    calls = {"submit": [], "poll": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            calls["submit"].append(json.loads(request.content))
            if submit_status != 200:
                return httpx.Response(submit_status, text="Requests rate limit exceeded")
            return httpx.Response(200, json={"output": {"task_id": "t-1", "task_status": "PENDING"}})
        if request.url.path.endswith("/tasks/t-1"):
            status = statuses[min(calls["poll"], len(statuses) - 1)]
            calls["poll"] += 1
            output = {"task_status": status}
            if status == "SUCCEEDED":
                output["results"] = [{"url": "https://cdn.example/out.png"}]
            return httpx.Response(200, json={"output": output})
        if request.url.host == "cdn.example":
            return httpx.Response(200, content=png)
        return httpx.Response(404)

    return httpx.MockTransport(handler), calls


@pytest.mark.asyncio
async def test_upscale_submits_polls_and_downloads(png_bytes):
    transport, calls = _transport(png_bytes, ["RUNNING", "SUCCEEDED"])
    client = DashScopeClient(_settings(), transport=transport)

    out = await client.upscale(png_bytes, factor=2)

    assert out == png_bytes
    assert calls["poll"] == 2
    body = calls["submit"][0]
    assert body["parameters"]["upscale_factor"] == 2
    assert body["input"]["base_image_url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_outpaint_crops_provider_border(png_bytes):
    transport, _ = _transport(png_bytes, ["SUCCEEDED"])
    client = DashScopeClient(_settings(outpaint_crop_ratio=0.1), transport=transport)

    out = await client.outpaint(png_bytes, x_scale=1.5, y_scale=1.5)

    with Image.open(io.BytesIO(out)) as img:
        assert img.size == (160, 80)


@pytest.mark.asyncio
async def test_rate_limited_submit_is_throttling(png_bytes):
    transport, _ = _transport(png_bytes, ["SUCCEEDED"], submit_status=429)
    client = DashScopeClient(_settings(), transport=transport)

    with pytest.raises(ProviderThrottled):
        await client.upscale(png_bytes)


@pytest.mark.asyncio
async def test_failed_task_is_stage_failure(png_bytes):
    transport, _ = _transport(png_bytes, ["RUNNING", "FAILED"])
    client = DashScopeClient(_settings(), transport=transport)

    with pytest.raises(StageFailure, match="provider task failed"):
        await client.outpaint(png_bytes)


@pytest.mark.asyncio
async def test_missing_api_key(png_bytes):
    client = DashScopeClient(_settings(dashscope_api_key=None))

    with pytest.raises(StageFailure, match="not configured"):
        await client.upscale(png_bytes)
