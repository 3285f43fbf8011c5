import logging

from fastapi import APIRouter, Depends, HTTPException, status

from intake.application import callback_service
from intake.application.callback_service import ExtractedRecord, MissingRecordKey
from intake.application.progress_registry import ProgressRegistry
from intake.interfaces.api.dependencies import get_registry
from intake.interfaces.api.schemas import CallbackResponse, CompletionCallback

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/records/callback", response_model=CallbackResponse)
def completion_callback(
    payload: CompletionCallback,
    registry: ProgressRegistry = Depends(get_registry),
) -> CallbackResponse:
    extracted = ExtractedRecord(
        key=payload.key,
        customer_name=payload.customer_name,
        total_amount=payload.total_amount,
        record_date=payload.invoice_date,
        status=payload.status,
        pdf_url=payload.resolved_pdf_url,
        pdf_filename=payload.resolved_pdf_filename,
        uploader_username=payload.resolved_username,
        document_id=payload.document_id,
        job_id=payload.job_id,
    )
    try:
        outcome = callback_service.handle_completion(extracted, registry)
    except MissingRecordKey as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Completion callback for %s failed", payload.key or "<no key>")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store extracted record.",
        ) from exc

    return CallbackResponse(
        message=f"Record {outcome.action} successfully",
        key=outcome.key,
        action=outcome.action,
        pdf_url=outcome.record.pdf_url,
        linked_document_id=outcome.linked_document_id,
        link_rule=outcome.link_rule,
    )
