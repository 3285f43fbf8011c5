import pytest

from intake.application.progress_registry import JobConflict, JobNotFound, ProgressRegistry
from intake.core.domain.upload_job import FailureCause, JobStatus, UploadJob


def _registry_with_job(job_id="job-1") -> ProgressRegistry:
    registry = ProgressRegistry()
    registry.create(UploadJob(job_id=job_id, filename="scan.pdf", content_type="application/pdf"))
    return registry


def test_update_returns_snapshot_copies():
    registry = _registry_with_job()
    snapshot = registry.update("job-1", status=JobStatus.uploading, progress=5)
    snapshot.progress = 99

    assert registry.get("job-1").progress == 5
    assert registry.get("job-1").status == JobStatus.uploading


def test_status_never_moves_backwards():
    registry = _registry_with_job()
    registry.update("job-1", status=JobStatus.dispatched, execution_id="exec-1")
    job = registry.update("job-1", status=JobStatus.uploading)

    assert job.status == JobStatus.dispatched
    assert job.execution_id == "exec-1"


def test_progress_does_not_drop_while_processing():
    registry = _registry_with_job()
    registry.update("job-1", status=JobStatus.dispatched, execution_id="exec-1")
    registry.update("job-1", status=JobStatus.processing, progress=60)
    job = registry.update("job-1", status=JobStatus.processing, progress=40)

    assert job.progress == 60


def test_progress_is_clamped():
    registry = _registry_with_job()
    assert registry.update("job-1", progress=150).progress == 100
    registry2 = _registry_with_job()
    assert registry2.update("job-1", progress=-3).progress == 0


def test_execution_id_requires_dispatched_status():
    registry = _registry_with_job()
    with pytest.raises(ValueError):
        registry.update("job-1", execution_id="exec-1")


def test_terminal_jobs_are_frozen():
    registry = _registry_with_job()
    registry.update("job-1", status=JobStatus.dispatched, execution_id="exec-1")
    registry.update("job-1", status=JobStatus.completed, progress=100)
    job = registry.update("job-1", status=JobStatus.failed, error="late")

    assert job.status == JobStatus.completed
    assert job.error is None


def test_error_only_kept_for_failed_jobs():
    registry = _registry_with_job()
    job = registry.update("job-1", status=JobStatus.uploading, error="nope")
    assert job.error is None

    job = registry.update(
        "job-1", status=JobStatus.failed, failure_cause=FailureCause.storage_error
    )
    assert job.error  # a default message is filled in
    assert job.failure_cause == FailureCause.storage_error


def test_transition_reports_only_the_first_terminal_move():
    registry = _registry_with_job()
    assert registry.transition("job-1", JobStatus.completed, progress=100) is True
    assert registry.transition("job-1", JobStatus.completed, progress=100) is False
    assert registry.transition("job-1", JobStatus.failed, error="x") is False
    assert registry.transition("missing", JobStatus.completed) is False


def test_unknown_job_and_unknown_fields():
    registry = _registry_with_job()
    with pytest.raises(JobNotFound):
        registry.update("nope", progress=10)
    with pytest.raises(ValueError):
        registry.update("job-1", filename="other.pdf")


def test_remove_and_clear_finished():
    registry = ProgressRegistry()
    for job_id in ("a", "b", "c"):
        registry.create(UploadJob(job_id=job_id, filename=f"{job_id}.pdf", content_type="application/pdf"))
    registry.transition("a", JobStatus.completed, progress=100)
    registry.transition("b", JobStatus.failed, error="boom")

    assert sorted(registry.clear_finished()) == ["a", "b"]
    assert [job.job_id for job in registry.list()] == ["c"]
    assert registry.remove("c") is not None
    assert registry.remove("c") is None
    assert registry.list() == []


def test_isolated_instances_do_not_share_state():
    first = _registry_with_job()
    second = ProgressRegistry()
    assert second.get("job-1") is None
    assert first.get("job-1") is not None


def test_live_job_id_cannot_be_registered_again():
    registry = _registry_with_job()
    registry.update("job-1", status=JobStatus.dispatched, execution_id="exec-1")

    with pytest.raises(JobConflict):
        registry.create(UploadJob(job_id="job-1", filename="again.pdf", content_type="application/pdf"))

    job = registry.get("job-1")
    assert job.status == JobStatus.dispatched
    assert job.execution_id == "exec-1"


def test_finished_job_id_can_be_reused():
    registry = _registry_with_job()
    registry.transition("job-1", JobStatus.failed, error="boom")

    registry.create(UploadJob(job_id="job-1", filename="retry.pdf", content_type="application/pdf"))

    job = registry.get("job-1")
    assert job.status == JobStatus.queued
    assert job.filename == "retry.pdf"
