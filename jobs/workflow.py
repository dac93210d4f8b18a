"""
Image workflow orchestration.

One-click pipeline, in order:
  1. background replacement  (serialized, rate limited provider)
  2. outpaint                (submit + poll)
  3. upscale                 (submit + poll)
  4. watermark               (local)

Every stage is optional. A failing stage is recorded and the pipeline
carries on with the image as it was before that stage. Only errors outside
a stage (loading the source image, storing the result) fail the job.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from jobs.context import JobContext, JobResult, StoredArtifact
from jobs.errors import StageCancelled, StageFailure
from jobs.payloads import OneClickWorkflowInput, WatermarkOptions
from services.artifact_store import ArtifactStore
from services.call_serializer import CallSerializer
from services.images import load_image_bytes, sniff_mime
from services.polling import CancelToken

logger = logging.getLogger(__name__)

BACKGROUND_REPLACE = "backgroundReplace"
OUTPAINT = "outpaint"
UPSCALE = "upscale"
WATERMARK = "watermark"

PIPELINE = (BACKGROUND_REPLACE, OUTPAINT, UPSCALE, WATERMARK)

STAGE_LABELS = {
    BACKGROUND_REPLACE: "background replacement",
    OUTPAINT: "outpainting",
    UPSCALE: "upscaling",
    WATERMARK: "watermarking",
}

_EXTENSIONS = {"image/png": "png", "image/webp": "webp", "image/jpeg": "jpg"}


@dataclass
class StageRunners:
    """The external collaborators each stage calls into."""

    replace_background: Callable[[bytes, bytes, str | None], Awaitable[bytes]]
    outpaint: Callable[[bytes, float, float, CancelToken | None], Awaitable[bytes]]
    upscale: Callable[[bytes, int, CancelToken | None], Awaitable[bytes]]
    watermark: Callable[[bytes, WatermarkOptions], bytes]


class WorkflowOrchestrator:
    def __init__(
        self,
        serializer: CallSerializer,
        artifacts: ArtifactStore,
        runners: StageRunners,
        image_loader: Callable[[str], Awaitable[bytes]] = load_image_bytes,
    ) -> None:
        self.serializer = serializer
        self.artifacts = artifacts
        self.runners = runners
        self.load_image = image_loader

    # ─────────────────────────────────────────────
    # stage calls
    # ─────────────────────────────────────────────

    async def _background_replace(self, image: bytes, reference_url: str, prompt: str | None) -> bytes:
        reference = await self.load_image(reference_url)
        return await self.serializer.enqueue(
            lambda: self.runners.replace_background(image, reference, prompt)
        )

    async def _call_stage(self, stage: str, image: bytes, params, token: CancelToken) -> bytes:
        token.raise_if_cancelled(stage)
        if stage == BACKGROUND_REPLACE:
            return await self._background_replace(
                image, params.reference_image_url, getattr(params, "prompt", None)
            )
        if stage == OUTPAINT:
            return await self.runners.outpaint(image, params.x_scale, params.y_scale, token)
        if stage == UPSCALE:
            return await self.runners.upscale(image, params.upscale_factor, token)
        if stage == WATERMARK:
            return await asyncio.to_thread(self.runners.watermark, image, params)
        raise ValueError(f"Unknown stage: {stage}")

    # ─────────────────────────────────────────────
    # pipelines
    # ─────────────────────────────────────────────

    async def run_one_click(self, ctx: JobContext, params: OneClickWorkflowInput) -> JobResult:
        t0 = time.monotonic()
        requested = {
            BACKGROUND_REPLACE: params.enable_background_replace,
            OUTPAINT: params.enable_outpaint,
            UPSCALE: params.enable_upscale,
            WATERMARK: params.enable_watermark,
        }
        ran = dict.fromkeys(PIPELINE, False)
        stage_errors: dict[str, str] = {}

        image = await self.load_image(params.image_url)
        total = len(PIPELINE)

        for i, stage in enumerate(PIPELINE):
            if not requested[stage]:
                logger.info("job=%s skipping %s", ctx.job_id, stage)
                continue

            await ctx.reporter.progress(
                f"Step {i + 1}/{total}: {STAGE_LABELS[stage]}",
                progress=i * 100 // total,
                completed_steps=i,
            )
            stage_t0 = time.monotonic()
            try:
                image = await self._call_stage(stage, image, params, ctx.token)
                ran[stage] = True
                logger.info("job=%s %s done in %.2fs", ctx.job_id, stage, time.monotonic() - stage_t0)
            except StageCancelled:
                raise
            except Exception as exc:
                # keep the pre-stage image and move on
                reason = exc.reason if isinstance(exc, StageFailure) else str(exc) or type(exc).__name__
                stage_errors[stage] = reason
                logger.warning("job=%s %s failed, continuing with previous image: %s", ctx.job_id, stage, reason)
                await ctx.reporter.stage_failed(stage, reason)

        await ctx.reporter.progress("saving result", progress=95, completed_steps=total)
        stored = await self._persist(ctx, image)

        logger.info(
            "job=%s one-click finished in %.2fs steps=%s",
            ctx.job_id, time.monotonic() - t0, ran,
        )
        return JobResult(
            output_data={
                "processedImageUrl": stored.url,
                "filename": stored.filename,
                "imageSize": stored.size_bytes,
                "processSteps": ran,
                "requestedSteps": requested,
                "stageErrors": stage_errors,
            },
            artifact=stored,
        )

    async def run_single(self, ctx: JobContext, stage: str) -> JobResult:
        """
        One-stage job. The stage is the whole job, so its failure
        propagates and fails the job.
        """
        params = ctx.params
        await ctx.reporter.progress(f"{STAGE_LABELS[stage]} in progress", progress=50, completed_steps=0)

        image = await self.load_image(params.image_url)
        image = await self._call_stage(stage, image, params, ctx.token)
        stored = await self._persist(ctx, image)

        return JobResult(
            output_data={
                "processedImageUrl": stored.url,
                "filename": stored.filename,
                "imageSize": stored.size_bytes,
                "processSteps": {stage: True},
            },
            artifact=stored,
        )

    async def _persist(self, ctx: JobContext, image: bytes) -> StoredArtifact:
        ext = _EXTENSIONS.get(sniff_mime(image), "jpg")
        filename = f"{ctx.job_type.lower().replace('_', '-')}-{ctx.job_id}.{ext}"
        url = await self.artifacts.put(image, filename, ctx.user_id)
        return StoredArtifact(filename=filename, url=url, size_bytes=len(image), process_type=ctx.job_type)

