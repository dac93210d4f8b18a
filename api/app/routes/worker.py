from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.dependencies import (
    get_current_user,
    get_dispatcher,
    get_serializer,
    get_session,
    require_internal,
)
from api.app.schemas.jobs import DrainResult, JobSummary, WorkerRun
from jobs.dispatcher import Dispatcher
from jobs.store import status_counts
from models.job import Job
from models.user import User
from services.call_serializer import CallSerializer

router = APIRouter(tags=["worker"])

RECENT_JOBS = 5


@router.post("/worker/run", response_model=DrainResult, dependencies=[Depends(require_internal)])
async def run_worker(
    body: WorkerRun | None = Body(None),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """One drain pass. `batch: true` keeps draining until the queue is empty."""
    report = await dispatcher.drain(batch=bool(body and body.batch))
    return DrainResult(**report.as_dict())


@router.get("/worker/status")
async def worker_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    serializer: CallSerializer = Depends(get_serializer),
):
    recent = (
        await db.execute(
            select(Job)
            .where(Job.user_id == user.id)
            .order_by(Job.updated_at.desc())
            .limit(RECENT_JOBS)
        )
    ).scalars().all()

    return {
        "counts": await status_counts(db, user.id),
        "recentJobs": [JobSummary.model_validate(j).model_dump(mode="json", by_alias=True) for j in recent],
        "dispatcher": {
            "ready": dispatcher.ready.is_set(),
            "inFlight": len(dispatcher.in_flight),
            "lastDrain": dispatcher.last_report.as_dict() if dispatcher.last_report else None,
        },
        "serializer": serializer.snapshot(),
    }
