# jobs/store.py
from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.errors import InvalidTransitionError, JobValidationError, NotFoundError, UnauthorizedError
from jobs.payloads import DEFAULT_TOTAL_STEPS, parse_input, parse_job_type
from jobs.states import COMPLETION_STATUSES, check_transition
from models.artifact import Artifact
from models.base import utcnow
from models.job import Job, JobStatus
from services.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

QUEUED_STEP = "queued"


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ─────────────────────────────────────────────
# create / read
# ─────────────────────────────────────────────

async def create_job(
    db: AsyncSession,
    *,
    job_type: str,
    input_data: dict,
    user_id: uuid.UUID,
    priority: int = 1,
    total_steps: int | None = None,
    project_id: uuid.UUID | None = None,
    max_retries: int = 3,
    current_step: str = QUEUED_STEP,
) -> Job:
    jt = parse_job_type(job_type)
    parse_input(jt.value, input_data)

    job = Job(
        job_type=jt.value,
        status=JobStatus.PENDING.value,
        priority=priority,
        progress=0,
        current_step=current_step,
        total_steps=total_steps or DEFAULT_TOTAL_STEPS[jt],
        completed_steps=0,
        input_data=dict(input_data),
        retry_count=0,
        max_retries=max_retries,
        user_id=user_id,
        project_id=project_id,
    )
    db.add(job)
    await db.flush()
    await db.refresh(job)
    logger.info("Created job %s [%s] priority=%d", job.id, job.job_type, job.priority)
    return job


async def create_jobs(
    db: AsyncSession,
    items: Sequence[dict],
    user_id: uuid.UUID,
    max_retries: int = 3,
) -> list[Job]:
    """
    Batch create. Every item is validated before anything is added,
    so one bad entry rejects the whole batch.
    """
    if not items:
        raise JobValidationError("Empty job batch")
    for item in items:
        if not item.get("type") or not item.get("inputData"):
            raise JobValidationError("Missing required fields: type, inputData")
        parse_input(item["type"], item["inputData"])

    created = []
    for item in items:
        created.append(
            await create_job(
                db,
                job_type=item["type"],
                input_data=item["inputData"],
                user_id=user_id,
                priority=item.get("priority", 1),
                total_steps=item.get("totalSteps"),
                project_id=item.get("projectId"),
                max_retries=max_retries,
            )
        )
    return created


async def get_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> Job:
    stmt = select(Job).where(Job.id == job_id)
    if user_id is not None:
        stmt = stmt.where(Job.user_id == user_id)
    job = (await db.execute(stmt)).scalar_one_or_none()
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return job


def _filters(
    user_id: uuid.UUID | None,
    status: str | None,
    job_type: str | None,
    ids: Sequence[uuid.UUID] | None,
) -> list:
    conds = []
    if user_id is not None:
        conds.append(Job.user_id == user_id)
    if status:
        conds.append(Job.status == status)
    if job_type:
        conds.append(Job.job_type == job_type)
    if ids:
        conds.append(Job.id.in_(list(ids)))
    return conds


async def list_jobs(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None = None,
    status: str | None = None,
    job_type: str | None = None,
    ids: Sequence[uuid.UUID] | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Job], int]:
    conds = _filters(user_id, status, job_type, ids)

    stmt = (
        select(Job)
        .where(*conds)
        .order_by(Job.priority.desc(), Job.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    jobs = list((await db.execute(stmt)).scalars().all())

    total = (await db.execute(select(func.count()).select_from(Job).where(*conds))).scalar_one()
    return jobs, total


async def status_counts(db: AsyncSession, user_id: uuid.UUID | None = None) -> dict[str, int]:
    stmt = select(Job.status, func.count()).group_by(Job.status)
    if user_id is not None:
        stmt = stmt.where(Job.user_id == user_id)
    counts = {s.value: 0 for s in JobStatus}
    for status, n in (await db.execute(stmt)).all():
        counts[status] = n
    return counts


async def pending_job_ids(db: AsyncSession, limit: int) -> list[uuid.UUID]:
    stmt = (
        select(Job.id)
        .where(Job.status == JobStatus.PENDING.value)
        .order_by(Job.priority.desc(), Job.created_at.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def processing_jobs(db: AsyncSession) -> list[Job]:
    stmt = (
        select(Job)
        .where(Job.status == JobStatus.PROCESSING.value)
        .order_by(Job.started_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


# ─────────────────────────────────────────────
# state transitions
# ─────────────────────────────────────────────

async def claim_job(db: AsyncSession, job_id: uuid.UUID) -> bool:
    """
    Atomic PENDING -> PROCESSING compare-and-set.
    Exactly one caller wins; everyone else sees rowcount 0.
    """
    now = utcnow()
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
        .values(
            status=JobStatus.PROCESSING.value,
            started_at=func.coalesce(Job.started_at, now),
            progress=0,
            completed_steps=0,
            current_step="starting",
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    claimed = result.rowcount == 1
    if claimed:
        logger.info("Claimed job %s", job_id)
    return claimed


async def update_progress(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    current_step: str,
    progress: int,
    completed_steps: int | None = None,
) -> bool:
    values: dict = {"current_step": current_step, "progress": max(0, min(100, progress))}
    if completed_steps is not None:
        values["completed_steps"] = completed_steps
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(stmt)).rowcount == 1


async def complete_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    output_data: dict,
    artifact_id: uuid.UUID | None = None,
) -> bool:
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
        .values(
            status=JobStatus.COMPLETED.value,
            progress=100,
            current_step="completed",
            completed_steps=Job.total_steps,
            output_data=output_data,
            artifact_id=artifact_id,
            error_message=None,
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    done = (await db.execute(stmt)).rowcount == 1
    if done:
        logger.info("Job %s completed", job_id)
    else:
        logger.warning("Job %s was no longer PROCESSING at completion", job_id)
    return done


async def fail_job(db: AsyncSession, job_id: uuid.UUID, error: str) -> bool:
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
        .values(
            status=JobStatus.FAILED.value,
            current_step="failed",
            error_message=error,
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    done = (await db.execute(stmt)).rowcount == 1
    if done:
        logger.error("Job %s failed: %s", job_id, error)
    return done


async def cancel_job(db: AsyncSession, job_id: uuid.UUID, expected: JobStatus) -> bool:
    """CANCELLED from `expected` (PENDING or PROCESSING). completed_at stays unset."""
    check_transition(expected.value, JobStatus.CANCELLED.value)
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == expected.value)
        .values(status=JobStatus.CANCELLED.value, current_step="cancelled")
        .execution_options(synchronize_session=False)
    )
    done = (await db.execute(stmt)).rowcount == 1
    if done:
        logger.info("Job %s cancelled (was %s)", job_id, expected.value)
    return done


async def patch_job(
    db: AsyncSession,
    job: Job,
    *,
    status: str | None = None,
    progress: int | None = None,
    current_step: str | None = None,
    completed_steps: int | None = None,
    output_data: dict | None = None,
    error_message: str | None = None,
    artifact_id: uuid.UUID | None = None,
) -> Job:
    """
    Partial update with guarded side effects:
    - status -> PROCESSING sets started_at if unset
    - status -> COMPLETED / FAILED sets completed_at
    Terminal jobs are immutable.
    """
    if job.is_terminal:
        raise InvalidTransitionError(f"Job {job.id} is {job.status} and can no longer change")

    now = utcnow()

    if status is not None:
        target = check_transition(job.status, status)
        if target == JobStatus.PROCESSING and job.status == JobStatus.PENDING.value:
            # same compare-and-set the dispatcher uses
            if not await claim_job(db, job.id):
                raise InvalidTransitionError(f"Job {job.id} was claimed concurrently")
            await db.refresh(job)
        else:
            job.status = target.value
            if target == JobStatus.PROCESSING and job.started_at is None:
                job.started_at = now
            if target in COMPLETION_STATUSES:
                job.completed_at = now

    if progress is not None:
        job.progress = max(0, min(100, progress))
    if current_step:
        job.current_step = current_step
    if completed_steps is not None:
        job.completed_steps = completed_steps
    if output_data is not None:
        job.output_data = output_data
    if error_message:
        job.error_message = error_message
    if artifact_id is not None:
        artifact = await db.get(Artifact, artifact_id)
        # another owner's artifact is reported as missing
        if artifact is None or artifact.user_id != job.user_id:
            raise NotFoundError(f"Artifact not found: {artifact_id}")
        job.artifact_id = artifact_id

    await db.flush()
    await db.refresh(job)
    return job


# ─────────────────────────────────────────────
# deletion
# ─────────────────────────────────────────────

async def delete_job(db: AsyncSession, job: Job, artifacts: ArtifactStore) -> None:
    """
    Delete a job and, best-effort, the artifact it produced.
    Storage errors are logged and never block the record deletion.
    """
    artifact = job.artifact
    if artifact is not None:
        try:
            await artifacts.delete(artifact.filename, artifact.user_id)
        except Exception as exc:
            logger.warning("Artifact %s delete failed for job %s: %s", artifact.id, job.id, exc)

    await db.delete(job)
    await db.flush()

    if artifact is not None:
        await db.delete(artifact)
        await db.flush()

    logger.info("Deleted job %s", job.id)


async def delete_jobs(
    db: AsyncSession,
    user_id: uuid.UUID,
    artifacts: ArtifactStore,
    job_ids: Sequence[uuid.UUID] | None = None,
    delete_all: bool = False,
) -> int:
    if delete_all:
        stmt = select(Job).where(Job.user_id == user_id)
    elif job_ids:
        wanted = set(job_ids)
        stmt = select(Job).where(Job.id.in_(wanted), Job.user_id == user_id)
    else:
        raise JobValidationError("Provide jobIds or set deleteAll to true")

    jobs = list((await db.execute(stmt)).scalars().all())

    if not delete_all and len(jobs) != len(wanted):
        raise UnauthorizedError("Some jobs do not exist or are not owned by the caller")

    for job in jobs:
        await delete_job(db, job, artifacts)

    logger.info("Deleted %d jobs for user %s", len(jobs), user_id)
    return len(jobs)
