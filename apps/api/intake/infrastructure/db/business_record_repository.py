from typing import Any, Dict, List, Optional, Tuple

from intake.core.domain.document import BusinessRecord
from intake.infrastructure.db import connection as db


TABLE_DDL = """
CREATE TABLE IF NOT EXISTS business_records (
    key TEXT PRIMARY KEY,
    uploader_username TEXT,
    pdf_filename TEXT,
    pdf_url TEXT,
    document_id TEXT,
    customer_name TEXT,
    total_amount NUMERIC,
    record_date DATE,
    status TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_business_records_document ON business_records(document_id);
"""

_COLUMNS = (
    "key, uploader_username, pdf_filename, pdf_url, document_id, customer_name, "
    "total_amount, record_date, status, updated_at"
)

# Fields the completion callback writes; document_id belongs to the linker.
UPSERT_FIELDS = (
    "uploader_username",
    "pdf_filename",
    "pdf_url",
    "customer_name",
    "total_amount",
    "record_date",
    "status",
)


def ensure_table() -> None:
    with db.cursor() as cur:
        cur.execute(TABLE_DDL)


def _row_to_record(row) -> BusinessRecord:
    total = row["total_amount"]
    return BusinessRecord(
        key=row["key"],
        uploader_username=row["uploader_username"],
        pdf_filename=row["pdf_filename"],
        pdf_url=row["pdf_url"],
        document_id=row["document_id"],
        customer_name=row["customer_name"],
        total_amount=float(total) if total is not None else None,
        record_date=row["record_date"],
        status=row["status"],
        updated_at=row["updated_at"],
    )


def get_record(key: str) -> Optional[BusinessRecord]:
    with db.cursor() as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM business_records WHERE key = %(key)s", {"key": key})
        row = cur.fetchone()
    return _row_to_record(row) if row else None


def list_unlinked_records(limit: int = 500) -> List[BusinessRecord]:
    with db.cursor() as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM business_records
            WHERE document_id IS NULL
            ORDER BY record_date DESC NULLS LAST, key
            LIMIT %(limit)s
            """,
            {"limit": limit},
        )
        rows = cur.fetchall()
    return [_row_to_record(row) for row in rows]


def upsert_record(
    key: str, fields: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None
) -> Tuple[bool, BusinessRecord]:
    """
    Create the record or update it in one statement.

    A new row takes `fields`, falling back to `defaults` for missing values.
    An existing row only changes where `fields` carries a non-null value.
    Returns (created, record).
    """
    defaults = defaults or {}
    params: Dict[str, Any] = {"key": key}
    for name in UPSERT_FIELDS:
        value = fields.get(name)
        params[name] = value if value is not None else defaults.get(name)
        params[f"new_{name}"] = value

    columns = ", ".join(UPSERT_FIELDS)
    values = ", ".join(f"%({name})s" for name in UPSERT_FIELDS)
    updates = ",\n                ".join(
        f"{name} = COALESCE(%(new_{name})s, business_records.{name})" for name in UPSERT_FIELDS
    )
    with db.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO business_records (key, {columns})
            VALUES (%(key)s, {values})
            ON CONFLICT (key) DO UPDATE SET
                {updates},
                updated_at = now()
            RETURNING {_COLUMNS}, (xmax = 0) AS inserted
            """,
            params,
        )
        row = cur.fetchone()
    return bool(row["inserted"]), _row_to_record(row)


def set_document_link(key: str, document_id: str) -> Tuple[bool, Optional[BusinessRecord]]:
    """
    Associate a document with a record unless one is already associated.

    Returns (linked, record). `linked` is False when the record already had a
    document or does not exist.
    """
    with db.cursor() as cur:
        cur.execute(
            f"""
            UPDATE business_records
            SET document_id = %(document_id)s, updated_at = now()
            WHERE key = %(key)s AND document_id IS NULL
            RETURNING {_COLUMNS}
            """,
            {"key": key, "document_id": document_id},
        )
        row = cur.fetchone()
    if row:
        return True, _row_to_record(row)
    return False, get_record(key)


def attach_document(
    key: str, document_id: str, pdf_url: str, pdf_filename: str
) -> Optional[BusinessRecord]:
    """Point a record at an explicitly uploaded file, replacing any earlier link."""
    with db.cursor() as cur:
        cur.execute(
            f"""
            UPDATE business_records
            SET document_id = %(document_id)s,
                pdf_url = %(pdf_url)s,
                pdf_filename = %(pdf_filename)s,
                updated_at = now()
            WHERE key = %(key)s
            RETURNING {_COLUMNS}
            """,
            {"key": key, "document_id": document_id, "pdf_url": pdf_url, "pdf_filename": pdf_filename},
        )
        row = cur.fetchone()
    return _row_to_record(row) if row else None
