from typing import Optional

from intake.core.domain.upload_job import FailureCause


class IntakeError(Exception):
    """Base for per-file pipeline failures; `cause` is what the job records."""

    cause: Optional[FailureCause] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(IntakeError):
    cause = FailureCause.validation_error


class StorageError(IntakeError):
    cause = FailureCause.storage_error


class DispatchError(IntakeError):
    cause = FailureCause.dispatch_error

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TrackingError(IntakeError):
    cause = FailureCause.tracking_lost


class RemoteError(IntakeError):
    cause = FailureCause.remote_error


class ExecutionTimeoutError(IntakeError, TimeoutError):
    cause = FailureCause.timeout


class RecordNotFound(LookupError):
    """No business record carries the requested key."""
