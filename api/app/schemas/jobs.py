from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# camelCase on the wire; field names are accepted too


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ─────────────────────────────────────────────
# requests
# ─────────────────────────────────────────────

class JobCreate(_Request):
    type: str
    input_data: dict
    priority: int = 1
    total_steps: int | None = Field(None, ge=1)
    project_id: uuid.UUID | None = None

    def as_payload(self) -> dict:
        return {
            "type": self.type,
            "inputData": self.input_data,
            "priority": self.priority,
            "totalSteps": self.total_steps,
            "projectId": self.project_id,
        }


class JobPatch(_Request):
    status: str | None = None
    progress: int | None = None
    current_step: str | None = None
    completed_steps: int | None = Field(None, ge=0)
    output_data: dict | None = None
    error_message: str | None = None
    artifact_id: uuid.UUID | None = None


class JobIds(_Request):
    job_ids: list[uuid.UUID] = Field(default_factory=list)


class JobDelete(JobIds):
    delete_all: bool = False


class WorkerRun(_Request):
    batch: bool = False


# ─────────────────────────────────────────────
# responses
# ─────────────────────────────────────────────

class ArtifactRef(_Response):
    id: uuid.UUID
    filename: str
    url: str


class JobSummary(_Response):
    id: uuid.UUID
    job_type: str = Field(alias="type")
    status: str
    priority: int
    progress: int
    current_step: str | None
    total_steps: int
    completed_steps: int
    error_message: str | None
    retry_count: int
    max_retries: int
    project_id: uuid.UUID | None
    artifact: ArtifactRef | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class JobDetail(JobSummary):
    input_data: dict
    output_data: dict | None


class Pagination(_Response):
    total: int
    limit: int
    offset: int
    has_more: bool


class JobList(_Response):
    jobs: list[JobSummary]
    pagination: Pagination
    counts: dict[str, int]


class JobsCreated(_Response):
    jobs: list[JobSummary]


class DeleteResult(_Response):
    deleted_count: int


class RetryResult(_Response):
    retry_count: int
    original_count: int
    jobs: list[JobSummary]


class RecoverResult(_Response):
    recovered: int
    failed: int
    total: int
    details: list[dict]


class DrainResult(_Response):
    claimed: int
    completed: int
    failed: int
    cancelled: int
    skipped: int
