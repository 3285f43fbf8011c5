from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    queued = "queued"
    uploading = "uploading"
    dispatched = "dispatched"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


_STATUS_RANK = {
    JobStatus.queued: 0,
    JobStatus.uploading: 1,
    JobStatus.dispatched: 2,
    JobStatus.processing: 3,
    # Both terminal states share a rank; neither can follow the other.
    JobStatus.completed: 4,
    JobStatus.failed: 4,
}


class FailureCause(str, Enum):
    validation_error = "validation_error"
    storage_error = "storage_error"
    dispatch_error = "dispatch_error"
    tracking_lost = "tracking_lost"
    remote_error = "remote_error"
    timeout = "timeout"
    # A bug rather than an environmental failure.
    internal_error = "internal_error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadJob:
    job_id: str
    filename: str
    content_type: str
    size_bytes: int = 0
    status: JobStatus = JobStatus.queued
    progress: int = 0
    message: str = ""
    execution_id: Optional[str] = None
    estimated_remaining_seconds: Optional[int] = None
    error: Optional[str] = None
    failure_cause: Optional[FailureCause] = None
    notify_address: Optional[str] = None
    document_id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
