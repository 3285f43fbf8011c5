from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadStatus(str, Enum):
    queued = "queued"
    uploading = "uploading"
    dispatched = "dispatched"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class FileUploadResult(BaseModel):
    job_id: str
    filename: str
    success: bool
    storage_path: Optional[str] = None
    public_url: Optional[str] = None
    document_id: Optional[str] = None
    execution_id: Optional[str] = None
    linked_record: Optional[str] = None
    error: Optional[str] = None


class BatchUploadResponse(BaseModel):
    message: str
    total_files: int
    success_count: int
    results: List[FileUploadResult]


class UploadStatusResponse(BaseModel):
    job_id: str
    filename: str
    content_type: Optional[str] = None
    size_bytes: int = 0
    status: UploadStatus
    progress: int = Field(default=0, ge=0, le=100)
    message: Optional[str] = None
    execution_id: Optional[str] = None
    estimated_remaining_seconds: Optional[int] = None
    error: Optional[str] = None
    failure_cause: Optional[str] = None
    document_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UploadListResponse(BaseModel):
    uploads: List[UploadStatusResponse]
    total: int


class ClearedUploadsResponse(BaseModel):
    removed: List[str]


class DocumentResponse(BaseModel):
    id: str
    storage_path: str
    public_url: str
    filename: str
    original_filename: str
    content_type: Optional[str] = None
    size_bytes: int = 0
    uploader_id: Optional[str] = None
    uploader_display_name: Optional[str] = None
    created_at: datetime


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int


class ExecutionStatusResponse(BaseModel):
    id: str
    status: str
    finished: bool
    success: bool
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    error: Optional[str] = None


class CompletionCallback(BaseModel):
    """Payload posted by the engine once extraction finishes."""

    # Engines often send invoice numbers as JSON numbers.
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    invoice_id: Optional[str] = Field(default=None, alias="invoiceId")
    doc_num: Optional[str] = Field(default=None, alias="docNum")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    total_amount: Optional[float] = Field(default=None, alias="totalAmount")
    invoice_date: Optional[date] = Field(default=None, alias="invoiceDate")
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    status: Optional[str] = None
    pdf_url: Optional[str] = Field(default=None, alias="pdfUrl")
    file_url: Optional[str] = Field(default=None, alias="fileUrl")
    pdf_filename: Optional[str] = Field(default=None, alias="pdfFilename")
    original_filename: Optional[str] = Field(default=None, alias="originalFilename")
    username: Optional[str] = None
    uploader_username: Optional[str] = None
    user: Optional[str] = None
    document_id: Optional[str] = Field(default=None, alias="documentId")
    job_id: Optional[str] = Field(default=None, alias="jobId")
    extracted_data: Optional[Dict[str, Any]] = Field(default=None, alias="extractedData")

    @property
    def key(self) -> str:
        return (self.invoice_id or self.doc_num or "").strip()

    @property
    def resolved_pdf_url(self) -> Optional[str]:
        return self.pdf_url or self.file_url

    @property
    def resolved_pdf_filename(self) -> Optional[str]:
        return self.pdf_filename or self.original_filename

    @property
    def resolved_username(self) -> Optional[str]:
        return self.username or self.uploader_username or self.user


class CallbackResponse(BaseModel):
    message: str
    key: str
    action: str
    pdf_url: Optional[str] = None
    linked_document_id: Optional[str] = None
    link_rule: Optional[str] = None


class RecordAttachmentResponse(BaseModel):
    message: str
    key: str
    document_id: str
    public_url: str
    link_rule: str = "reference"
