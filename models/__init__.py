from models.base import Base
from models.user import User
from models.artifact import Artifact
from models.job import Job, JobStatus, JobType
from models.event import Event

__all__ = [
    "Base",
    "User",
    "Artifact",
    "Job",
    "JobStatus",
    "JobType",
    "Event",
]
