# jobs/handlers.py
"""
Job handlers for each job type.

A handler takes a JobContext (validated params, progress reporter, cancel
token) and returns a JobResult. Handlers never touch the jobs table; the
dispatcher owns every status transition.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from jobs.context import JobContext, JobResult
from jobs.workflow import BACKGROUND_REPLACE, OUTPAINT, UPSCALE, WorkflowOrchestrator
from models.job import JobType

logger = logging.getLogger(__name__)

Handler = Callable[[JobContext], Awaitable[JobResult]]


def build_handlers(orchestrator: WorkflowOrchestrator) -> dict[str, Handler]:
    async def handle_one_click(ctx: JobContext) -> JobResult:
        return await orchestrator.run_one_click(ctx, ctx.params)

    async def handle_background_replace(ctx: JobContext) -> JobResult:
        return await orchestrator.run_single(ctx, BACKGROUND_REPLACE)

    async def handle_outpaint(ctx: JobContext) -> JobResult:
        return await orchestrator.run_single(ctx, OUTPAINT)

    async def handle_upscale(ctx: JobContext) -> JobResult:
        return await orchestrator.run_single(ctx, UPSCALE)

    return {
        JobType.ONE_CLICK_WORKFLOW.value: handle_one_click,
        JobType.BACKGROUND_REPLACE.value: handle_background_replace,
        JobType.IMAGE_EXPANSION.value: handle_outpaint,
        JobType.IMAGE_UPSCALING.value: handle_upscale,
    }
