# jobs/retry.py
from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.errors import JobValidationError
from jobs.states import RETRYABLE_STATUSES
from models.job import Job, JobStatus

logger = logging.getLogger(__name__)

RETRY_STEP = "queued (retry)"


async def retry_jobs(
    db: AsyncSession,
    user_id: uuid.UUID,
    job_ids: Sequence[uuid.UUID],
) -> list[Job]:
    """
    Clone each terminal job the caller owns into a fresh PENDING job.

    The originals are left untouched. Ids that are missing, not owned or
    still active are skipped; if that leaves nothing, JobValidationError.
    """
    if not job_ids:
        raise JobValidationError("Provide jobIds to retry")

    stmt = select(Job).where(
        Job.id.in_(list(job_ids)),
        Job.user_id == user_id,
        Job.status.in_([s.value for s in RETRYABLE_STATUSES]),
    )
    originals = list((await db.execute(stmt)).scalars().all())
    if not originals:
        raise JobValidationError("No retryable jobs found (only FAILED, CANCELLED or COMPLETED jobs can be retried)")

    clones = []
    for src in originals:
        clone = Job(
            job_type=src.job_type,
            status=JobStatus.PENDING.value,
            priority=src.priority,
            progress=0,
            current_step=RETRY_STEP,
            total_steps=src.total_steps,
            completed_steps=0,
            input_data=dict(src.input_data or {}),
            retry_count=0,
            max_retries=src.max_retries,
            user_id=user_id,
            project_id=src.project_id,
        )
        db.add(clone)
        clones.append(clone)

    await db.flush()
    for clone in clones:
        await db.refresh(clone)
    logger.info("Retry: %d of %d requested jobs re-queued for user %s", len(clones), len(job_ids), user_id)
    return clones
