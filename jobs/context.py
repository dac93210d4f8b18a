# jobs/context.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

from jobs.payloads import JobInput
from services.polling import CancelToken


class JobReporter(Protocol):
    """Progress sink for one in-flight job."""

    async def progress(self, step: str, progress: int, completed_steps: int | None = None) -> None:
        ...

    async def stage_failed(self, stage: str, error: str) -> None:
        ...


@dataclass
class JobContext:
    job_id: uuid.UUID
    job_type: str
    user_id: uuid.UUID
    params: JobInput
    reporter: JobReporter
    total_steps: int = 1
    token: CancelToken = field(default_factory=CancelToken)


@dataclass
class StoredArtifact:
    filename: str
    url: str
    size_bytes: int
    process_type: str


@dataclass
class JobResult:
    output_data: dict
    artifact: StoredArtifact | None = None
