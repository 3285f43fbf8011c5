"""
In-memory registry of upload jobs, shared by the pipeline and the read API.

Writers update by job id (last write wins). The registry itself enforces the
job lifecycle: an id held by a live job cannot be registered again, statuses
only move forward, terminal jobs are frozen, and progress never drops while a
job is processing. Readers always get copies.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from intake.core.domain.upload_job import FailureCause, JobStatus, UploadJob

logger = logging.getLogger(__name__)

_UPDATABLE = {
    "status",
    "progress",
    "message",
    "execution_id",
    "estimated_remaining_seconds",
    "error",
    "failure_cause",
    "document_id",
    "size_bytes",
    "notify_address",
}


class JobNotFound(KeyError):
    pass


class JobConflict(ValueError):
    """The job id belongs to a job that has not reached a terminal state."""


class ProgressRegistry:
    def __init__(self) -> None:
        self._jobs: Dict[str, UploadJob] = {}
        self._lock = threading.RLock()

    def create(self, job: UploadJob) -> UploadJob:
        """Register a job. A finished job may be replaced; a live one may not."""
        with self._lock:
            existing = self._jobs.get(job.job_id)
            if existing is not None:
                if not existing.status.is_terminal:
                    raise JobConflict(job.job_id)
                logger.info("Replacing finished job %s", job.job_id)
            self._jobs[job.job_id] = replace(job)
            return replace(job)

    def get(self, job_id: str) -> Optional[UploadJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def list(self) -> List[UploadJob]:
        with self._lock:
            jobs = [replace(job) for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at)

    def remove(self, job_id: str) -> Optional[UploadJob]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def clear_finished(self) -> List[str]:
        with self._lock:
            finished = [jid for jid, job in self._jobs.items() if job.status.is_terminal]
            for jid in finished:
                del self._jobs[jid]
        return finished

    def update(self, job_id: str, **changes) -> UploadJob:
        """
        Apply changes to a job and return the resulting snapshot.

        Changes that would break the lifecycle are dropped: a status earlier
        than the current one, any change to a terminal job, a lower progress
        while processing. Raises JobNotFound for unknown ids.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFound(job_id)
            if current.status.is_terminal:
                logger.debug("Ignoring update to terminal job %s", job_id)
                return replace(current)

            status = changes.get("status", current.status)
            if not isinstance(status, JobStatus):
                status = JobStatus(status)
            if status.rank < current.status.rank:
                logger.debug(
                    "Ignoring backwards transition %s -> %s for job %s",
                    current.status.value,
                    status.value,
                    job_id,
                )
                status = current.status
            changes["status"] = status

            if "progress" in changes:
                progress = max(0, min(100, int(changes["progress"])))
                if status == JobStatus.processing and current.status == JobStatus.processing:
                    progress = max(progress, current.progress)
                changes["progress"] = progress

            if "failure_cause" in changes and changes["failure_cause"] is not None:
                changes["failure_cause"] = FailureCause(changes["failure_cause"])

            if changes.get("execution_id") and status.rank < JobStatus.dispatched.rank:
                raise ValueError("execution_id requires a dispatched job")

            if status != JobStatus.failed:
                changes.pop("error", None)
                changes.pop("failure_cause", None)
            elif not (changes.get("error") or current.error):
                changes["error"] = "Processing failed"

            updated = replace(current, updated_at=datetime.now(timezone.utc), **changes)
            self._jobs[job_id] = updated
            return replace(updated)

    def transition(self, job_id: str, status: JobStatus, **changes) -> bool:
        """
        Move a job to `status` and report whether the move happened.

        Used for terminal transitions, where the caller must act exactly once
        (for example to send a single completion notification).
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.status.is_terminal:
                return False
            if status.rank < current.status.rank:
                return False
            snapshot = self.update(job_id, status=status, **changes)
            return snapshot.status == status
