# worker/main.py
"""
Cron trigger: periodically asks the API process to drain the job queue.

Jobs always run inside the API process, which owns the dispatcher and the
rate-limit serializer. This process only wakes it up, so jobs submitted
while nothing else triggers a drain still get picked up.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys

import httpx

# Ensure project root is on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.app.config import Settings, get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("worker")


async def trigger_once(client: httpx.AsyncClient, settings: Settings) -> dict | None:
    headers = {}
    if settings.internal_api_secret:
        headers["X-Internal-Secret"] = settings.internal_api_secret

    resp = await client.post("/v1/worker/run", json={"batch": True}, headers=headers)
    resp.raise_for_status()
    report = resp.json()
    if report.get("claimed"):
        logger.info("Drain: %s", report)
    return report


async def run_loop() -> None:
    settings = get_settings()
    logger.info(
        "Trigger starting (api=%s poll=%.1fs)",
        settings.api_base_url,
        settings.worker_poll_interval,
    )

    # a batch drain can take as long as the jobs it runs
    async with httpx.AsyncClient(base_url=settings.api_base_url, timeout=httpx.Timeout(None, connect=10.0)) as client:
        while True:
            try:
                await trigger_once(client, settings)
            except httpx.HTTPError as exc:
                logger.warning("Trigger failed: %s", exc)
            except Exception as exc:
                logger.exception("Trigger loop error: %s", exc)

            await asyncio.sleep(settings.worker_poll_interval)


def main() -> None:
    asyncio.run(run_loop())


if __name__ == "__main__":
    main()
