"""
Structured event logging to the events table.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from models.event import Event

logger = logging.getLogger(__name__)


async def log_event(
    db: AsyncSession,
    event_type: str,
    level: str = "info",
    source: str | None = None,
    message: str | None = None,
    metadata: dict | None = None,
    job_id: uuid.UUID | None = None,
) -> Event:
    """Persist a structured event log entry."""
    event = Event(
        event_type=event_type,
        level=level,
        source=source,
        job_id=job_id,
        message=message,
        metadata_=metadata,
    )
    db.add(event)
    await db.flush()
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        "[%s] %s %s",
        event_type,
        message or "",
        metadata or {},
    )
    return event


async def log_job_event(
    db: AsyncSession,
    event_type: str,
    job_id: uuid.UUID,
    job_type: str,
    level: str = "info",
    message: str | None = None,
    **extra,
) -> Event:
    """Diagnostic trail for one job (stage failures, recoveries, job failures)."""
    return await log_event(
        db,
        event_type,
        level,
        source="dispatcher",
        message=message,
        metadata={"job_id": str(job_id), "job_type": job_type, **extra},
        job_id=job_id,
    )
