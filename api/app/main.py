# api/app/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.app.config import get_settings
from api.app.middleware.request_logging import RequestLoggingMiddleware
from api.app.routes import files, health, jobs, worker
from db.engine import dispose_engine
from db.session import get_session_factory
from jobs.dispatcher import Dispatcher
from jobs.errors import (
    InvalidTransitionError,
    JobError,
    JobValidationError,
    NotFoundError,
    UnauthorizedError,
)
from jobs.handlers import build_handlers
from jobs.recovery import run_startup_recovery
from jobs.workflow import StageRunners, WorkflowOrchestrator
from services.artifact_store import LocalArtifactStore
from services.background_replace import replace_background
from services.call_serializer import CallSerializer
from services.dashscope import DashScopeClient
from services.watermark import add_watermark

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    serializer = CallSerializer(
        "background-replace",
        min_interval=settings.serializer_min_interval_seconds,
        cooldown_seconds=settings.serializer_cooldown_seconds,
    )
    artifacts = LocalArtifactStore(settings.artifact_dir, settings.artifact_base_url)
    dashscope = DashScopeClient(settings)
    orchestrator = WorkflowOrchestrator(
        serializer,
        artifacts,
        StageRunners(
            replace_background=replace_background,
            outpaint=dashscope.outpaint,
            upscale=dashscope.upscale,
            watermark=add_watermark,
        ),
    )
    session_factory = get_session_factory()
    dispatcher = Dispatcher(
        session_factory,
        build_handlers(orchestrator),
        batch_size=settings.worker_batch_size,
        max_batch=settings.worker_max_batch,
        concurrency=settings.worker_concurrency,
        artifacts=artifacts,
    )

    app.state.serializer = serializer
    app.state.artifacts = artifacts
    app.state.dispatcher = dispatcher

    recovery = None
    if settings.recovery_on_startup:
        recovery = asyncio.create_task(
            run_startup_recovery(session_factory, dispatcher, settings.recovery_startup_delay)
        )
    else:
        dispatcher.open()

    logger.info("API started (recovery_on_startup=%s)", settings.recovery_on_startup)
    try:
        yield
    finally:
        if recovery is not None and not recovery.done():
            recovery.cancel()
        await dispatcher.wait_idle()
        await dispose_engine()


app = FastAPI(
    title="Image Jobs API",
    description="Asynchronous image processing job queue",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


ERROR_STATUS: list[tuple[type[JobError], int]] = [
    (InvalidTransitionError, 409),
    (JobValidationError, 400),
    (UnauthorizedError, 403),
    (NotFoundError, 404),
]


@app.exception_handler(JobError)
async def job_error_handler(request: Request, exc: JobError) -> JSONResponse:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return JSONResponse(status_code=code, content={"detail": str(exc)})
    logger.error("Unhandled job error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(health.router)
app.include_router(health.router, prefix="/v1")
app.include_router(jobs.router, prefix="/v1")
app.include_router(worker.router, prefix="/v1")
app.include_router(files.router, prefix="/v1")


def run() -> None:
    settings = get_settings()
    uvicorn.run("api.app.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
