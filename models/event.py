from __future__ import annotations

import uuid

from sqlalchemy import Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDPrimaryKey
from models.job import JSONType


class Event(Base, UUIDPrimaryKey, TimestampMixin):
    """Append-only diagnostic trail. Rows outlive the jobs they mention."""

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_type", "event_type"),
        Index("ix_events_job_id", "job_id"),
    )

    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    level: Mapped[str] = mapped_column(String(16), default="info")  # debug | info | warning | error
    source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # no FK: deleting a job keeps its history
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
