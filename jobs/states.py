# jobs/states.py
from __future__ import annotations

from models.job import TERMINAL_STATUSES, JobStatus

from jobs.errors import InvalidTransitionError

# Forward-only edges. PROCESSING -> PENDING is reserved for the recovery sweep
# and never goes through this table.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# completed_at is set iff the job is in one of these
COMPLETION_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

RETRYABLE_STATUSES = TERMINAL_STATUSES


def parse_status(value: str) -> JobStatus:
    try:
        return JobStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown job status: {value}") from None


def check_transition(current: str, target: str) -> JobStatus:
    """Validate a status change and return the target as a JobStatus."""
    src = parse_status(current)
    dst = parse_status(target)
    if src == dst and src not in TERMINAL_STATUSES:
        return dst
    if dst not in ALLOWED_TRANSITIONS[src]:
        raise InvalidTransitionError(f"Cannot move job from {src.value} to {dst.value}")
    return dst
