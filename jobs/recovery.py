# jobs/recovery.py
"""
Recovery of jobs orphaned in PROCESSING by a crash or restart.

Only run while nothing in this process is executing those jobs: at startup
before the dispatcher opens, or with the dispatcher's in-flight ids
excluded.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.errors import RecoveryExhausted
from jobs.store import as_utc, processing_jobs
from models.base import utcnow
from models.job import Job, JobStatus
from services.observability import log_job_event

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    recovered: int = 0
    failed: int = 0
    details: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.recovered + self.failed


async def recover_stuck_jobs(
    db: AsyncSession,
    exclude: Collection[uuid.UUID] = (),
) -> RecoveryReport:
    """
    PROCESSING jobs under their retry limit go back to PENDING with
    retry_count + 1; jobs at the limit end FAILED.
    """
    report = RecoveryReport()

    for job in await processing_jobs(db):
        if job.id in exclude:
            continue

        if job.retry_count < job.max_retries:
            attempt = job.retry_count + 1
            values = dict(
                status=JobStatus.PENDING.value,
                retry_count=attempt,
                progress=0,
                completed_steps=0,
                started_at=None,
                current_step=f"recovering (attempt {attempt}/{job.max_retries})",
                error_message=(
                    f"Interrupted by a server restart, re-queued automatically "
                    f"({attempt}/{job.max_retries})"
                ),
            )
            action = "recovered"
        else:
            values = dict(
                status=JobStatus.FAILED.value,
                current_step="retry limit reached",
                error_message=str(RecoveryExhausted(job.max_retries, job.current_step)),
                completed_at=utcnow(),
            )
            action = "failed"

        result = await db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue

        if action == "recovered":
            report.recovered += 1
            report.details.append({"id": str(job.id), "action": action})
        else:
            report.failed += 1
            report.details.append(
                {"id": str(job.id), "action": action, "reason": f"exceeded max retries ({job.max_retries})"}
            )

        await log_job_event(
            db, f"job_{action}", job.id, job.job_type,
            level="warning" if action == "recovered" else "error",
            message=values["error_message"],
            retry_count=values.get("retry_count", job.retry_count),
        )

    logger.info("Recovery sweep: %d recovered, %d failed", report.recovered, report.failed)
    return report


async def stuck_jobs(db: AsyncSession, now: datetime | None = None) -> list[dict]:
    """PROCESSING jobs with how long they have been running, oldest first."""
    now = now or utcnow()
    out = []
    for job in await processing_jobs(db):
        started = as_utc(job.started_at)
        out.append(
            {
                "id": str(job.id),
                "type": job.job_type,
                "retryCount": job.retry_count,
                "maxRetries": job.max_retries,
                "currentStep": job.current_step,
                "progress": job.progress,
                "startedAt": started.isoformat() if started else None,
                "updatedAt": as_utc(job.updated_at).isoformat(),
                "stuckMinutes": round((now - started).total_seconds() / 60) if started else None,
            }
        )
    return out


async def run_startup_recovery(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher,
    delay: float = 3.0,
) -> RecoveryReport:
    """
    Process-start hook: wait for the app to settle, sweep, then open the
    dispatcher and kick one drain if anything came back to PENDING.
    The dispatcher opens even if the sweep errors.
    """
    if delay > 0:
        await asyncio.sleep(delay)

    report = RecoveryReport()
    try:
        async with session_factory() as db:
            report = await recover_stuck_jobs(db)
            await db.commit()
    except Exception as exc:
        logger.exception("Startup recovery failed: %s", exc)
    finally:
        dispatcher.open()

    if report.recovered:
        dispatcher.trigger(batch=True)
    return report
