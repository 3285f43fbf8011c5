import uuid
from typing import List, Optional

from intake.core.domain.document import DocumentRecord
from intake.infrastructure.db import connection as db


TABLE_DDL = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    storage_path TEXT NOT NULL UNIQUE,
    public_url TEXT NOT NULL,
    filename TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    content_type TEXT,
    size_bytes BIGINT NOT NULL DEFAULT 0,
    uploader_id TEXT,
    uploader_display_name TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_documents_created_at ON documents(created_at DESC);
"""

_COLUMNS = (
    "id, storage_path, public_url, filename, original_filename, content_type, "
    "size_bytes, uploader_id, uploader_display_name, created_at"
)


def ensure_table() -> None:
    with db.cursor() as cur:
        cur.execute(TABLE_DDL)


def _row_to_document(row) -> DocumentRecord:
    return DocumentRecord(
        id=row["id"],
        storage_path=row["storage_path"],
        public_url=row["public_url"],
        filename=row["filename"],
        original_filename=row["original_filename"],
        content_type=row["content_type"] or "",
        size_bytes=int(row["size_bytes"] or 0),
        uploader_id=row["uploader_id"],
        uploader_display_name=row["uploader_display_name"],
        created_at=row["created_at"],
    )


def create_document(
    *,
    storage_path: str,
    public_url: str,
    filename: str,
    original_filename: str,
    content_type: str,
    size_bytes: int,
    uploader_id: Optional[str],
    uploader_display_name: Optional[str],
) -> DocumentRecord:
    with db.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO documents (id, storage_path, public_url, filename, original_filename,
                                   content_type, size_bytes, uploader_id, uploader_display_name)
            VALUES (%(id)s, %(storage_path)s, %(public_url)s, %(filename)s, %(original_filename)s,
                    %(content_type)s, %(size_bytes)s, %(uploader_id)s, %(uploader_display_name)s)
            RETURNING {_COLUMNS}
            """,
            {
                "id": str(uuid.uuid4()),
                "storage_path": storage_path,
                "public_url": public_url,
                "filename": filename,
                "original_filename": original_filename,
                "content_type": content_type,
                "size_bytes": size_bytes,
                "uploader_id": uploader_id,
                "uploader_display_name": uploader_display_name,
            },
        )
        row = cur.fetchone()
    return _row_to_document(row)


def get_document(document_id: str) -> Optional[DocumentRecord]:
    with db.cursor() as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM documents WHERE id = %(id)s",
            {"id": document_id},
        )
        row = cur.fetchone()
    return _row_to_document(row) if row else None


def list_documents(limit: int = 500) -> List[DocumentRecord]:
    """Newest first; the linker relies on this order."""
    with db.cursor() as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM documents ORDER BY created_at DESC LIMIT %(limit)s",
            {"limit": limit},
        )
        rows = cur.fetchall()
    return [_row_to_document(row) for row in rows]
