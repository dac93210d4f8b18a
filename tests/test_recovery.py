# tests/test_recovery.py
from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from jobs.recovery import recover_stuck_jobs, run_startup_recovery, stuck_jobs
from jobs.store import as_utc, claim_job, create_job, get_job
from models.base import utcnow
from models.job import Job, JobStatus


async def _processing_job(sf, user, retry_count=0, max_retries=3, step="Step 2/4: outpainting") -> Job:
    async with sf() as db:
        job = await create_job(
            db,
            job_type="IMAGE_UPSCALING",
            input_data={"imageUrl": "https://img.example/a.png"},
            user_id=user.id,
            max_retries=max_retries,
        )
        await claim_job(db, job.id)
        await db.execute(
            update(Job).where(Job.id == job.id).values(retry_count=retry_count, current_step=step)
        )
        await db.commit()
    return job


async def _fresh(sf, job_id) -> Job:
    async with sf() as db:
        return await get_job(db, job_id)


@pytest.mark.asyncio
async def test_job_under_limit_goes_back_to_pending(session_factory, user):
    job = await _processing_job(session_factory, user, retry_count=1)

    async with session_factory() as db:
        report = await recover_stuck_jobs(db)
        await db.commit()

    assert report.recovered == 1
    assert report.failed == 0
    fresh = await _fresh(session_factory, job.id)
    assert fresh.status == JobStatus.PENDING.value
    assert fresh.retry_count == 2
    assert fresh.progress == 0
    assert fresh.started_at is None
    assert fresh.completed_at is None
    assert fresh.current_step == "recovering (attempt 2/3)"
    assert "2/3" in fresh.error_message


@pytest.mark.asyncio
async def test_job_at_limit_fails(session_factory, user):
    job = await _processing_job(session_factory, user, retry_count=3)

    async with session_factory() as db:
        report = await recover_stuck_jobs(db)
        await db.commit()

    assert report.failed == 1
    fresh = await _fresh(session_factory, job.id)
    assert fresh.status == JobStatus.FAILED.value
    assert fresh.retry_count == 3
    assert fresh.completed_at is not None
    assert "Recovery limit reached after 3 restarts" in fresh.error_message
    assert "Step 2/4: outpainting" in fresh.error_message


@pytest.mark.asyncio
async def test_recovered_job_gets_a_new_started_at_when_reclaimed(session_factory, user):
    job = await _processing_job(session_factory, user)
    first_start = (await _fresh(session_factory, job.id)).started_at

    async with session_factory() as db:
        await recover_stuck_jobs(db)
        await db.commit()
    assert (await _fresh(session_factory, job.id)).started_at is None

    async with session_factory() as db:
        assert await claim_job(db, job.id)
        await db.commit()
    second_start = (await _fresh(session_factory, job.id)).started_at
    assert second_start is not None
    assert as_utc(second_start) >= as_utc(first_start)


@pytest.mark.asyncio
async def test_in_flight_jobs_are_left_alone(session_factory, user):
    running = await _processing_job(session_factory, user)
    orphan = await _processing_job(session_factory, user)

    async with session_factory() as db:
        report = await recover_stuck_jobs(db, exclude=[running.id])
        await db.commit()

    assert report.recovered == 1
    assert (await _fresh(session_factory, running.id)).status == JobStatus.PROCESSING.value
    assert (await _fresh(session_factory, orphan.id)).status == JobStatus.PENDING.value


@pytest.mark.asyncio
async def test_stuck_jobs_reports_minutes(session_factory, user):
    job = await _processing_job(session_factory, user)
    async with session_factory() as db:
        await db.execute(
            update(Job).where(Job.id == job.id).values(started_at=utcnow() - timedelta(minutes=12))
        )
        await db.commit()

    async with session_factory() as db:
        stuck = await stuck_jobs(db)

    assert len(stuck) == 1
    assert stuck[0]["id"] == str(job.id)
    assert stuck[0]["stuckMinutes"] == 12


@pytest.mark.asyncio
async def test_startup_recovery_opens_dispatcher_and_triggers(session_factory, user):
    await _processing_job(session_factory, user)
    dispatcher = MagicMock()

    report = await run_startup_recovery(session_factory, dispatcher, delay=0)

    assert report.recovered == 1
    dispatcher.open.assert_called_once()
    dispatcher.trigger.assert_called_once_with(batch=True)


@pytest.mark.asyncio
async def test_startup_recovery_with_nothing_stuck(session_factory, user):
    dispatcher = MagicMock()

    report = await run_startup_recovery(session_factory, dispatcher, delay=0)

    assert report.total == 0
    dispatcher.open.assert_called_once()
    dispatcher.trigger.assert_not_called()
