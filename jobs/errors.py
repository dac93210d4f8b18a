"""
Error taxonomy for job submission and execution.

Validation, authorization and lookup errors surface to the API caller.
Stage errors stay inside the workflow orchestrator, job failures are
caught at the dispatcher boundary and persisted on the job.
"""
from __future__ import annotations


class JobError(Exception):
    """Base class for every job-subsystem error."""


class JobValidationError(JobError):
    """Submission input is missing or malformed; no job is created."""


class InvalidTransitionError(JobValidationError):
    """A status change would move a job backwards or touch a terminal job."""


class UnauthorizedError(JobError):
    """Caller does not own the referenced job or resource."""


class NotFoundError(JobError):
    """Job or artifact is absent (or not visible to the caller)."""


class StageFailure(JobError):
    """One pipeline stage failed or timed out."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.reason = message


class ProviderThrottled(StageFailure):
    """The provider signalled rate or concurrency limiting."""


class StageCancelled(StageFailure):
    """The stage was interrupted through its cancel token."""


class JobFailure(JobError):
    """Fatal error while executing a job; the job ends FAILED."""


class RecoveryExhausted(JobError):
    """A job was orphaned by a crash more times than it may be retried."""

    def __init__(self, max_retries: int, last_step: str | None) -> None:
        super().__init__(
            f"Recovery limit reached after {max_retries} restarts; "
            f"last step: {last_step or 'unknown'}"
        )
        self.max_retries = max_retries
        self.last_step = last_step
