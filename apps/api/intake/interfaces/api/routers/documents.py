from fastapi import APIRouter, HTTPException, Query, status

from intake.core.domain.document import DocumentRecord
from intake.infrastructure.db import document_repository
from intake.interfaces.api.schemas import DocumentListResponse, DocumentResponse

router = APIRouter()


def _to_response(document: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(**vars(document))


@router.get("/documents", response_model=DocumentListResponse)
def list_documents(limit: int = Query(default=100, ge=1, le=500)) -> DocumentListResponse:
    documents = [_to_response(doc) for doc in document_repository.list_documents(limit=limit)]
    return DocumentListResponse(documents=documents, total=len(documents))


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: str) -> DocumentResponse:
    document = document_repository.get_document(document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found.",
        )
    return _to_response(document)
