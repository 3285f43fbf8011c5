"""
Completion callback from the engine: upsert the extracted business record and
link it to its document when it has none yet.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

from intake.application.progress_registry import ProgressRegistry
from intake.application.record_linker import link_record
from intake.core.domain.document import BusinessRecord, DocumentRecord
from intake.infrastructure.db import business_record_repository as records
from intake.infrastructure.db import document_repository as documents

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER = "Unknown Customer"
DEFAULT_STATUS = "pending"


class MissingRecordKey(ValueError):
    pass


@dataclass
class ExtractedRecord:
    key: Optional[str]
    customer_name: Optional[str] = None
    total_amount: Optional[float] = None
    record_date: Optional[date] = None
    status: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_filename: Optional[str] = None
    uploader_username: Optional[str] = None
    document_id: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class CallbackOutcome:
    key: str
    action: str
    record: BusinessRecord
    linked_document_id: Optional[str] = None
    link_rule: Optional[str] = None


def _supplied_fields(extracted: ExtractedRecord) -> dict:
    fields = {}
    for name in records.UPSERT_FIELDS:
        value = getattr(extracted, name)
        if value not in (None, ""):
            fields[name] = value
    return fields


def upsert_record(extracted: ExtractedRecord) -> Tuple[str, str, BusinessRecord]:
    key = (extracted.key or "").strip()
    if not key:
        raise MissingRecordKey("A record key (invoiceId or docNum) is required")

    created, record = records.upsert_record(
        key,
        _supplied_fields(extracted),
        defaults={
            "customer_name": DEFAULT_CUSTOMER,
            "total_amount": 0,
            "record_date": date.today(),
            "status": DEFAULT_STATUS,
        },
    )
    return key, "created" if created else "updated", record


def _referenced_document(
    extracted: ExtractedRecord, registry: Optional[ProgressRegistry]
) -> Optional[DocumentRecord]:
    document_id = extracted.document_id
    if not document_id and extracted.job_id and registry is not None:
        job = registry.get(extracted.job_id)
        document_id = job.document_id if job else None
    if not document_id:
        return None
    document = documents.get_document(document_id)
    if document is None:
        logger.warning("Callback referenced unknown document %s", document_id)
    return document


def handle_completion(
    extracted: ExtractedRecord, registry: Optional[ProgressRegistry] = None
) -> CallbackOutcome:
    key, action, record = upsert_record(extracted)
    outcome = CallbackOutcome(key=key, action=action, record=record)
    logger.info("Callback %s record %s", action, key)

    if record.document_id:
        outcome.linked_document_id = record.document_id
        return outcome

    document = _referenced_document(extracted, registry)
    if document is not None:
        document_id, rule = document.id, "reference"
    else:
        link = link_record(record, documents.list_documents())
        if link is None:
            logger.info("No document matches record %s yet", key)
            return outcome
        document_id, rule = link.document_id, link.rule

    linked, refreshed = records.set_document_link(key, document_id)
    if refreshed is not None:
        outcome.record = refreshed
        outcome.linked_document_id = refreshed.document_id
    if linked:
        outcome.link_rule = rule
        logger.info("Linked record %s to document %s (%s)", key, document_id, rule)
    return outcome
