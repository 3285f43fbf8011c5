import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import RedirectResponse

from intake.application.ingestion_service import IncomingFile, IngestionService, Uploader
from intake.core.domain.errors import RecordNotFound, StorageError, ValidationError
from intake.infrastructure.db import business_record_repository, document_repository
from intake.interfaces.api.dependencies import get_ingestion_service
from intake.interfaces.api.schemas import RecordAttachmentResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/records/{key}/upload", response_model=RecordAttachmentResponse)
async def upload_record_document(
    key: str,
    file: UploadFile = File(...),
    uploader_id: Optional[str] = Form(default=None),
    uploader_name: Optional[str] = Form(default=None),
    service: IngestionService = Depends(get_ingestion_service),
) -> RecordAttachmentResponse:
    incoming = IncomingFile(
        filename=file.filename or "document.pdf",
        content_type=file.content_type or "",
        stream=file.file,
    )
    try:
        document, _ = await service.attach_to_record(
            key, incoming, Uploader(user_id=uploader_id, display_name=uploader_name)
        )
    except RecordNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Record {key} not found.",
        ) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file.",
        ) from exc

    return RecordAttachmentResponse(
        message="File uploaded successfully",
        key=key,
        document_id=document.id,
        public_url=document.public_url,
    )


@router.get("/records/{key}/document")
def record_document(key: str) -> RedirectResponse:
    record = business_record_repository.get_record(key)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Record {key} not found.",
        )

    url = record.pdf_url
    if record.document_id:
        document = document_repository.get_document(record.document_id)
        if document is not None:
            url = document.public_url
        else:
            logger.warning("Record %s points at missing document %s", key, record.document_id)
    if not url:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No document found for record {key}. Upload a PDF file first.",
        )
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
