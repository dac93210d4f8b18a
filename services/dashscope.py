"""
DashScope async image tasks (outpaint, super-resolution upscale).

Both follow the same shape: submit -> task_id -> poll until SUCCEEDED or
FAILED -> download the result image.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from api.app.config import Settings, get_settings
from jobs.errors import ProviderThrottled, StageFailure
from services.images import crop_borders, load_image_bytes, to_data_url
from services.polling import CancelToken, TaskStatus, poll_until_done

logger = logging.getLogger(__name__)

OUTPAINT = "outpaint"
UPSCALE = "upscale"


def _result_url(output: dict[str, Any]) -> str | None:
    if output.get("output_image_url"):
        return output["output_image_url"]
    results = output.get("results") or []
    if results and isinstance(results[0], dict):
        return results[0].get("url")
    return None


class DashScopeClient:
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        s = self.settings
        return httpx.AsyncClient(
            base_url=s.dashscope_base_url,
            headers={"Authorization": f"Bearer {s.dashscope_api_key}"},
            timeout=httpx.Timeout(s.submit_timeout_seconds),
            transport=self._transport,
        )

    def _require_key(self, stage: str) -> None:
        if not self.settings.dashscope_api_key:
            raise StageFailure(stage, "DashScope API key is not configured")

    async def submit(self, stage: str, path: str, body: dict) -> str:
        async with self._client() as client:
            try:
                resp = await client.post(path, json=body, headers={"X-DashScope-Async": "enable"})
            except httpx.HTTPError as exc:
                raise StageFailure(stage, f"submit failed: {exc}") from exc

        if resp.status_code == 429:
            raise ProviderThrottled(stage, f"429 {resp.text[:200]}")
        if resp.is_error:
            raise StageFailure(stage, f"submit failed: {resp.status_code} {resp.text[:200]}")

        task_id = (resp.json().get("output") or {}).get("task_id")
        if not task_id:
            raise StageFailure(stage, "submit returned no task_id")
        logger.info("DashScope %s task submitted: %s", stage, task_id)
        return task_id

    async def poll(self, stage: str, task_id: str) -> TaskStatus:
        async with self._client() as client:
            try:
                resp = await client.get(f"/tasks/{task_id}", timeout=self.settings.poll_timeout_seconds)
            except httpx.HTTPError as exc:
                raise StageFailure(stage, f"poll failed: {exc}") from exc

        if resp.is_error:
            raise StageFailure(stage, f"poll failed: {resp.status_code}")

        payload = resp.json()
        output = payload.get("output") or {}
        return TaskStatus(
            status=output.get("task_status", "UNKNOWN"),
            result_url=_result_url(output),
            message=output.get("message") or payload.get("message"),
            raw=payload,
        )

    async def run_task(self, stage: str, path: str, body: dict, token: CancelToken | None = None) -> bytes:
        task_id = await self.submit(stage, path, body)
        done = await poll_until_done(
            stage,
            lambda: self.poll(stage, task_id),
            interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.poll_max_attempts,
            token=token,
        )
        if not done.result_url:
            raise StageFailure(stage, "task succeeded without a result url")

        async with self._client() as client:
            try:
                return await load_image_bytes(done.result_url, client=client)
            except httpx.HTTPError as exc:
                raise StageFailure(stage, f"result download failed: {exc}") from exc

    async def outpaint(
        self,
        image: bytes,
        x_scale: float = 2.0,
        y_scale: float = 2.0,
        token: CancelToken | None = None,
    ) -> bytes:
        self._require_key(OUTPAINT)
        body = {
            "model": self.settings.outpaint_model,
            "input": {"image_url": to_data_url(image)},
            "parameters": {
                "x_scale": x_scale,
                "y_scale": y_scale,
                "best_quality": False,
                "limit_image_size": True,
            },
        }
        result = await self.run_task(OUTPAINT, "/services/aigc/image2image/out-painting", body, token)

        ratio = self.settings.outpaint_crop_ratio
        if ratio > 0:
            try:
                result = crop_borders(result, ratio)
            except OSError as exc:
                logger.warning("Outpaint crop skipped: %s", exc)
        return result

    async def upscale(self, image: bytes, factor: int = 2, token: CancelToken | None = None) -> bytes:
        self._require_key(UPSCALE)
        body = {
            "model": self.settings.upscale_model,
            "input": {
                "function": "super_resolution",
                "prompt": "Image super-resolution.",
                "base_image_url": to_data_url(image),
            },
            "parameters": {"upscale_factor": factor, "n": 1},
        }
        return await self.run_task(UPSCALE, "/services/aigc/image2image/image-synthesis", body, token)
