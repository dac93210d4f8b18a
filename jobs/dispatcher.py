# jobs/dispatcher.py
"""
Claims PENDING jobs and runs them through their handler.

Claiming is the compare-and-set in jobs.store.claim_job, so any number of
concurrent drains (in-process triggers, the cron trigger, a manual
/worker/run) end up processing disjoint sets of jobs.

Every database write here happens in its own short session; no transaction
is held open while a handler waits on a provider.
"""
from __future__ import annotations

import asyncio
import logging
import time
import traceback
import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.context import JobContext, JobResult
from jobs.errors import JobFailure, StageCancelled
from jobs.handlers import Handler
from jobs.payloads import parse_input
from jobs.store import (
    cancel_job,
    claim_job,
    complete_job,
    fail_job,
    get_job,
    pending_job_ids,
    update_progress,
)
from models.artifact import Artifact
from models.job import JobStatus
from services.artifact_store import ArtifactStore
from services.observability import log_job_event
from services.polling import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class _DbReporter:
    """Commits each progress update in its own short session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], job_id: uuid.UUID, job_type: str) -> None:
        self._sf = session_factory
        self.job_id = job_id
        self.job_type = job_type

    async def progress(self, step: str, progress: int, completed_steps: int | None = None) -> None:
        async with self._sf() as db:
            updated = await update_progress(
                db, self.job_id, current_step=step, progress=progress, completed_steps=completed_steps
            )
            await db.commit()
        if not updated:
            logger.debug("job=%s progress dropped, no longer PROCESSING", self.job_id)

    async def stage_failed(self, stage: str, error: str) -> None:
        async with self._sf() as db:
            await log_job_event(
                db, "stage_failed", self.job_id, self.job_type,
                level="warning", message=error, stage=stage,
            )
            await db.commit()


class Dispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: Mapping[str, Handler],
        *,
        batch_size: int = 5,
        max_batch: int = 100,
        concurrency: int = 3,
        artifacts: ArtifactStore | None = None,
    ) -> None:
        self._sf = session_factory
        self.artifacts = artifacts
        self.handlers = dict(handlers)
        self.batch_size = batch_size
        self.max_batch = max_batch

        # closed until the startup recovery sweep has run
        self.ready = asyncio.Event()

        self._slots = asyncio.Semaphore(concurrency)
        self._tokens: dict[uuid.UUID, CancelToken] = {}
        self._background: asyncio.Task | None = None
        self._again = False
        self.last_report: DrainReport | None = None

    # ─────────────────────────────────────────────
    # public
    # ─────────────────────────────────────────────

    def open(self) -> None:
        if not self.ready.is_set():
            logger.info("Dispatcher ready")
        self.ready.set()

    @property
    def in_flight(self) -> list[uuid.UUID]:
        return list(self._tokens)

    def cancel(self, job_id: uuid.UUID) -> bool:
        """Signal an in-flight job to stop. False if this process is not running it."""
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancel requested for in-flight job %s", job_id)
        return True

    def trigger(self, batch: bool = True) -> None:
        """
        Schedule a background drain. If one is already running it picks up
        another pass when it finishes instead of starting a second drain.
        """
        if self._background is not None and not self._background.done():
            self._again = True
            return
        self._background = asyncio.create_task(self._run_triggered(batch))

    async def wait_idle(self) -> None:
        while self._background is not None and not self._background.done():
            await asyncio.gather(self._background, return_exceptions=True)

    async def drain(self, batch: bool = False) -> DrainReport:
        """
        One drain pass. Without `batch` at most `batch_size` jobs are
        looked at; with it, keep going until the queue is empty or
        `max_batch` jobs have been looked at.
        """
        await self.ready.wait()

        report = DrainReport()
        budget = self.max_batch if batch else self.batch_size
        seen = 0
        t0 = time.monotonic()

        while seen < budget:
            async with self._sf() as db:
                ids = await pending_job_ids(db, min(self.batch_size, budget - seen))
            if not ids:
                break
            seen += len(ids)
            await asyncio.gather(*(self._process(job_id, report) for job_id in ids))
            if not batch:
                break

        self.last_report = report
        if seen:
            logger.info(
                "Drain finished in %.2fs: %s", time.monotonic() - t0, report.as_dict()
            )
        return report

    # ─────────────────────────────────────────────
    # internals
    # ─────────────────────────────────────────────

    async def _run_triggered(self, batch: bool) -> None:
        while True:
            self._again = False
            try:
                await self.drain(batch=batch)
            except Exception as exc:
                logger.exception("Triggered drain failed: %s", exc)
            if not self._again:
                return

    async def _process(self, job_id: uuid.UUID, report: DrainReport) -> None:
        async with self._slots:
            async with self._sf() as db:
                if not await claim_job(db, job_id):
                    await db.rollback()
                    report.skipped += 1
                    return
                job = await get_job(db, job_id)
                await db.commit()

            report.claimed += 1
            token = CancelToken()
            self._tokens[job_id] = token
            t0 = time.monotonic()
            logger.info("job=%s start [%s]", job_id, job.job_type)

            try:
                handler = self.handlers.get(job.job_type)
                if handler is None:
                    raise JobFailure(f"Unknown job type: {job.job_type}")

                ctx = JobContext(
                    job_id=job.id,
                    job_type=job.job_type,
                    user_id=job.user_id,
                    params=parse_input(job.job_type, job.input_data),
                    reporter=_DbReporter(self._sf, job.id, job.job_type),
                    total_steps=job.total_steps,
                    token=token,
                )
                result = await handler(ctx)

            except StageCancelled:
                await self._finish_cancelled(job_id, report)
            except Exception as exc:
                if token.cancelled:
                    await self._finish_cancelled(job_id, report)
                else:
                    await self._finish_failed(job_id, job.job_type, exc, report)
            else:
                if token.cancelled:
                    await self._discard_artifact(job_id, job.user_id, result)
                    await self._finish_cancelled(job_id, report)
                else:
                    await self._finish_completed(job_id, job.user_id, result, report)
            finally:
                self._tokens.pop(job_id, None)
                logger.info("job=%s done in %.2fs", job_id, time.monotonic() - t0)

    async def _finish_completed(
        self,
        job_id: uuid.UUID,
        user_id: uuid.UUID,
        result: JobResult,
        report: DrainReport,
    ) -> None:
        async with self._sf() as db:
            artifact_id = None
            if result.artifact is not None:
                artifact = Artifact(
                    user_id=user_id,
                    filename=result.artifact.filename,
                    url=result.artifact.url,
                    size_bytes=result.artifact.size_bytes,
                    process_type=result.artifact.process_type,
                )
                db.add(artifact)
                await db.flush()
                artifact_id = artifact.id

            if not await complete_job(db, job_id, result.output_data, artifact_id):
                # someone else finalised it first (cancel, recovery)
                await db.rollback()
                await self._discard_artifact(job_id, user_id, result)
                report.skipped += 1
                return
            await db.commit()
        report.completed += 1

    async def _discard_artifact(self, job_id: uuid.UUID, user_id: uuid.UUID, result: JobResult) -> None:
        if result.artifact is None or self.artifacts is None:
            return
        try:
            await self.artifacts.delete(result.artifact.filename, user_id)
        except Exception as exc:
            logger.warning("Orphaned artifact %s of job %s not removed: %s", result.artifact.filename, job_id, exc)

    async def _finish_failed(
        self,
        job_id: uuid.UUID,
        job_type: str,
        exc: Exception,
        report: DrainReport,
    ) -> None:
        message = str(exc) or type(exc).__name__
        async with self._sf() as db:
            failed = await fail_job(db, job_id, message)
            await log_job_event(
                db, "job_failed", job_id, job_type,
                level="error", message=message,
                traceback="".join(traceback.format_exception(exc)),
            )
            await db.commit()
        if failed:
            report.failed += 1

    async def _finish_cancelled(self, job_id: uuid.UUID, report: DrainReport) -> None:
        async with self._sf() as db:
            cancelled = await cancel_job(db, job_id, JobStatus.PROCESSING)
            await db.commit()
        if cancelled:
            report.cancelled += 1
