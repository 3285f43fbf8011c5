import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from intake.application.execution_monitor import ExecutionMonitor
from intake.application.ingestion_service import IncomingFile, IngestionService, Uploader
from intake.application.progress_registry import ProgressRegistry
from intake.core.domain.upload_job import UploadJob
from intake.interfaces.api.dependencies import get_ingestion_service, get_monitor, get_registry
from intake.interfaces.api.schemas import (
    BatchUploadResponse,
    ClearedUploadsResponse,
    FileUploadResult,
    UploadListResponse,
    UploadStatus,
    UploadStatusResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _to_status(job: UploadJob) -> UploadStatusResponse:
    return UploadStatusResponse(
        job_id=job.job_id,
        filename=job.filename,
        content_type=job.content_type,
        size_bytes=job.size_bytes,
        status=UploadStatus(job.status.value),
        progress=job.progress,
        message=job.message,
        execution_id=job.execution_id,
        estimated_remaining_seconds=job.estimated_remaining_seconds,
        error=job.error,
        failure_cause=job.failure_cause.value if job.failure_cause else None,
        document_id=job.document_id,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.post("/documents/upload", response_model=BatchUploadResponse)
async def upload_documents(
    files: List[UploadFile] = File(...),
    uploader_id: Optional[str] = Form(default=None),
    uploader_name: Optional[str] = Form(default=None),
    notify_address: Optional[str] = Form(default=None),
    job_ids: Optional[List[str]] = Form(default=None),
    service: IngestionService = Depends(get_ingestion_service),
) -> BatchUploadResponse:
    if not files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please select at least one file.",
        )

    incoming = [
        IncomingFile(
            filename=upload.filename or "document",
            content_type=upload.content_type or "",
            stream=upload.file,
        )
        for upload in files
    ]
    logger.info("Received %d file(s) from %s", len(incoming), uploader_name or uploader_id or "anonymous")
    results = await service.ingest_batch(
        incoming,
        uploader=Uploader(user_id=uploader_id, display_name=uploader_name),
        notify_address=notify_address,
        job_ids=job_ids,
    )

    payload = [FileUploadResult(**vars(result)) for result in results]
    success_count = sum(1 for r in payload if r.success)
    return BatchUploadResponse(
        message=f"Processed {len(payload)} files ({success_count} successful)",
        total_files=len(payload),
        success_count=success_count,
        results=payload,
    )


@router.get("/uploads", response_model=UploadListResponse)
def list_uploads(registry: ProgressRegistry = Depends(get_registry)) -> UploadListResponse:
    uploads = [_to_status(job) for job in registry.list()]
    return UploadListResponse(uploads=uploads, total=len(uploads))


@router.get("/uploads/{job_id}", response_model=UploadStatusResponse)
def upload_status(job_id: str, registry: ProgressRegistry = Depends(get_registry)) -> UploadStatusResponse:
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Upload job not found.",
        )
    return _to_status(job)


@router.delete("/uploads/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_upload(
    job_id: str,
    registry: ProgressRegistry = Depends(get_registry),
    monitor: ExecutionMonitor = Depends(get_monitor),
) -> None:
    monitor.cancel(job_id)
    if registry.remove(job_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Upload job not found.",
        )


@router.delete("/uploads", response_model=ClearedUploadsResponse)
def clear_finished_uploads(registry: ProgressRegistry = Depends(get_registry)) -> ClearedUploadsResponse:
    return ClearedUploadsResponse(removed=registry.clear_finished())
