"""
Best-effort association between uploaded documents and business records.

Rules are tried in order and the first satisfied rule wins; within a rule the
first candidate in iteration order wins. No scoring across candidates.
"""

import logging
import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from intake.core.domain.document import BusinessRecord, DocumentRecord, LinkResult

logger = logging.getLogger(__name__)

TIMESTAMP_PREFIX = re.compile(r"^\d+-")

RULE_UPLOADER = "uploader"
RULE_FILENAME = "filename"
RULE_URL = "url"
RULE_KEY_IN_FILENAME = "key_in_filename"


def strip_timestamp_prefix(filename: str) -> str:
    return TIMESTAMP_PREFIX.sub("", filename, count=1)


def _uploader_matches(document: DocumentRecord, record: BusinessRecord) -> bool:
    if not record.uploader_username:
        return False
    identities = {document.uploader_id, document.uploader_display_name}
    return record.uploader_username in identities


def _filename_matches(document: DocumentRecord, record: BusinessRecord) -> bool:
    return bool(record.pdf_filename) and record.pdf_filename == document.filename


def _url_matches(document: DocumentRecord, record: BusinessRecord) -> bool:
    return bool(record.pdf_url) and record.pdf_url == document.public_url


def _key_in_filename(document: DocumentRecord, record: BusinessRecord) -> bool:
    key = (record.key or "").strip().lower()
    if not key or not document.filename:
        return False
    return key in strip_timestamp_prefix(document.filename).lower()


Rule = Tuple[str, Callable[[DocumentRecord, BusinessRecord], bool]]

RULES: Sequence[Rule] = (
    (RULE_UPLOADER, _uploader_matches),
    (RULE_FILENAME, _filename_matches),
    (RULE_URL, _url_matches),
    (RULE_KEY_IN_FILENAME, _key_in_filename),
)


def link_document(
    document: DocumentRecord, candidates: Iterable[BusinessRecord]
) -> Optional[LinkResult]:
    """Pick at most one business record for a finished document."""
    records = list(candidates)
    for rule_name, predicate in RULES:
        matches = [record for record in records if predicate(document, record)]
        if not matches:
            continue
        if rule_name == RULE_KEY_IN_FILENAME and len(matches) > 1:
            logger.warning(
                "Ambiguous link for document %s: keys %s all appear in %r; using %s",
                document.id,
                [m.key for m in matches],
                document.filename,
                matches[0].key,
            )
        chosen = matches[0]
        return LinkResult(document_id=document.id, business_key=chosen.key, rule=rule_name)
    return None


def link_record(
    record: BusinessRecord, documents: Iterable[DocumentRecord]
) -> Optional[LinkResult]:
    """Same precedence chain with the record fixed and documents iterated."""
    docs: List[DocumentRecord] = list(documents)
    for rule_name, predicate in RULES:
        matches = [doc for doc in docs if predicate(doc, record)]
        if not matches:
            continue
        if rule_name == RULE_KEY_IN_FILENAME and len(matches) > 1:
            logger.warning(
                "Ambiguous link for record %s: %d documents mention the key; using %s",
                record.key,
                len(matches),
                matches[0].id,
            )
        return LinkResult(document_id=matches[0].id, business_key=record.key, rule=rule_name)
    return None
