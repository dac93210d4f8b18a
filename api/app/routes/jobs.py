from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from api.app.dependencies import (
    get_artifacts,
    get_current_user,
    get_dispatcher,
    get_session,
    require_internal,
)
from api.app.schemas.jobs import (
    DeleteResult,
    JobCreate,
    JobDelete,
    JobDetail,
    JobIds,
    JobList,
    JobPatch,
    JobsCreated,
    JobSummary,
    Pagination,
    RecoverResult,
    RetryResult,
)
from jobs.dispatcher import Dispatcher
from jobs.errors import InvalidTransitionError, JobValidationError
from jobs.recovery import recover_stuck_jobs, stuck_jobs
from jobs.retry import retry_jobs
from jobs.store import (
    cancel_job,
    create_jobs,
    delete_jobs,
    get_job,
    list_jobs,
    patch_job,
    status_counts,
)
from models.job import JobStatus
from models.user import User
from services.artifact_store import LocalArtifactStore
from services.observability import log_event

router = APIRouter(tags=["jobs"])


# ─────────────────────────────────────────────
# collection
# ─────────────────────────────────────────────

@router.post("/jobs", response_model=JobSummary | JobsCreated)
async def submit_jobs(
    body: JobCreate | list[JobCreate] = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Submit one job or a list of jobs; a list is all-or-nothing."""
    items = body if isinstance(body, list) else [body]
    created = await create_jobs(
        db,
        [item.as_payload() for item in items],
        user.id,
        max_retries=get_settings().worker_max_retries,
    )
    await log_event(db, "jobs_submitted", "info", source="api", metadata={
        "user_id": str(user.id),
        "job_ids": [str(j.id) for j in created],
    })
    await db.commit()

    dispatcher.trigger(batch=True)

    if isinstance(body, list):
        return JobsCreated(jobs=[JobSummary.model_validate(j) for j in created])
    return JobSummary.model_validate(created[0])


@router.get("/jobs", response_model=JobList)
async def get_jobs(
    status: str | None = None,
    type: str | None = None,
    ids: str | None = Query(None, description="Comma-separated job ids"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    id_list = None
    if ids:
        try:
            id_list = [uuid.UUID(part) for part in ids.split(",") if part.strip()]
        except ValueError:
            raise JobValidationError("ids must be a comma-separated list of UUIDs") from None

    jobs, total = await list_jobs(
        db,
        user_id=user.id,
        status=status,
        job_type=type,
        ids=id_list,
        limit=limit,
        offset=offset,
    )
    return JobList(
        jobs=[JobSummary.model_validate(j) for j in jobs],
        pagination=Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        counts=await status_counts(db, user.id),
    )


@router.delete("/jobs", response_model=DeleteResult)
async def remove_jobs(
    body: JobDelete,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    artifacts: LocalArtifactStore = Depends(get_artifacts),
):
    deleted = await delete_jobs(
        db, user.id, artifacts, job_ids=body.job_ids, delete_all=body.delete_all
    )
    return DeleteResult(deleted_count=deleted)


@router.post("/jobs/retry", response_model=RetryResult)
async def retry(
    body: JobIds,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    clones = await retry_jobs(db, user.id, body.job_ids)
    await db.commit()

    dispatcher.trigger(batch=True)

    return RetryResult(
        retry_count=len(clones),
        original_count=len(body.job_ids),
        jobs=[JobSummary.model_validate(j) for j in clones],
    )


# ─────────────────────────────────────────────
# recovery (internal)
# ─────────────────────────────────────────────

@router.post("/jobs/recover", response_model=RecoverResult, dependencies=[Depends(require_internal)])
async def recover(
    db: AsyncSession = Depends(get_session),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    # jobs this process is running right now are not stuck
    report = await recover_stuck_jobs(db, exclude=dispatcher.in_flight)
    await db.commit()

    if report.recovered:
        dispatcher.trigger(batch=True)

    return RecoverResult(
        recovered=report.recovered,
        failed=report.failed,
        total=report.total,
        details=report.details,
    )


@router.get("/jobs/recover", dependencies=[Depends(require_internal)])
async def list_stuck(db: AsyncSession = Depends(get_session)):
    tasks = await stuck_jobs(db)
    return {"stuckCount": len(tasks), "jobs": tasks}


# ─────────────────────────────────────────────
# single job
# ─────────────────────────────────────────────

@router.get("/jobs/{job_id}", response_model=JobDetail)
async def get_job_detail(
    job_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_job(db, job_id, user.id)


@router.patch("/jobs/{job_id}", response_model=JobDetail)
async def update_job(
    job_id: uuid.UUID,
    body: JobPatch,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    job = await get_job(db, job_id, user.id)
    return await patch_job(db, job, **body.model_dump(exclude_unset=True))


@router.post("/jobs/{job_id}/cancel", response_model=JobDetail)
async def cancel(
    job_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    job = await get_job(db, job_id, user.id)
    if job.is_terminal:
        raise InvalidTransitionError(f"Job {job.id} is already {job.status}")

    done = False
    if job.status == JobStatus.PENDING.value:
        done = await cancel_job(db, job.id, JobStatus.PENDING)
    if not done:
        # claimed meanwhile, or already running: stop the processor too
        dispatcher.cancel(job.id)
        done = await cancel_job(db, job.id, JobStatus.PROCESSING)
    if not done:
        raise InvalidTransitionError(f"Job {job.id} finished before it could be cancelled")

    await db.commit()
    await db.refresh(job)
    return job
