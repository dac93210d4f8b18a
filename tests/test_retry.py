# tests/test_retry.py
from __future__ import annotations

import uuid

import pytest

from jobs.errors import JobValidationError
from jobs.retry import RETRY_STEP, retry_jobs
from jobs.store import claim_job, create_job, fail_job, get_job
from models.job import JobStatus


async def _failed_job(sf, user, input_data=None, priority=2):
    async with sf() as db:
        job = await create_job(
            db,
            job_type="IMAGE_UPSCALING",
            input_data=input_data or {"imageUrl": "a", "upscaleFactor": 4},
            user_id=user.id,
            priority=priority,
            project_id=uuid.uuid4(),
        )
        await claim_job(db, job.id)
        await fail_job(db, job.id, "provider down")
        await db.commit()
    return job


@pytest.mark.asyncio
async def test_retry_clones_terminal_job(session_factory, user):
    original = await _failed_job(session_factory, user)

    async with session_factory() as db:
        clones = await retry_jobs(db, user.id, [original.id])
        await db.commit()

    assert len(clones) == 1
    clone = clones[0]
    assert clone.id != original.id
    assert clone.status == JobStatus.PENDING.value
    assert clone.input_data == {"imageUrl": "a", "upscaleFactor": 4}
    assert clone.job_type == original.job_type
    assert clone.priority == 2
    assert clone.project_id == original.project_id
    assert clone.current_step == RETRY_STEP
    assert clone.retry_count == 0

    async with session_factory() as db:
        untouched = await get_job(db, original.id)
    assert untouched.status == JobStatus.FAILED.value
    assert untouched.error_message == "provider down"


@pytest.mark.asyncio
async def test_retry_skips_active_and_foreign_jobs(session_factory, user, other_user):
    mine = await _failed_job(session_factory, user)
    theirs = await _failed_job(session_factory, other_user)
    async with session_factory() as db:
        pending = await create_job(db, job_type="IMAGE_UPSCALING", input_data={"imageUrl": "b"}, user_id=user.id)
        await db.commit()

    async with session_factory() as db:
        clones = await retry_jobs(db, user.id, [mine.id, theirs.id, pending.id])
        await db.commit()

    assert len(clones) == 1
    assert clones[0].input_data == mine.input_data


@pytest.mark.asyncio
async def test_retry_with_nothing_eligible_is_an_error(session_factory, user):
    async with session_factory() as db:
        pending = await create_job(db, job_type="IMAGE_UPSCALING", input_data={"imageUrl": "b"}, user_id=user.id)
        await db.commit()

    async with session_factory() as db:
        with pytest.raises(JobValidationError):
            await retry_jobs(db, user.id, [pending.id])
        with pytest.raises(JobValidationError):
            await retry_jobs(db, user.id, [])
