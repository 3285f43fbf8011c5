from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass
class DocumentRecord:
    id: str
    storage_path: str
    public_url: str
    filename: str
    original_filename: str
    content_type: str
    size_bytes: int
    uploader_id: Optional[str]
    uploader_display_name: Optional[str]
    created_at: datetime


@dataclass
class BusinessRecord:
    key: str
    uploader_username: Optional[str] = None
    pdf_filename: Optional[str] = None
    pdf_url: Optional[str] = None
    document_id: Optional[str] = None
    customer_name: Optional[str] = None
    total_amount: Optional[float] = None
    record_date: Optional[date] = None
    status: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class LinkResult:
    document_id: str
    business_key: str
    rule: str
