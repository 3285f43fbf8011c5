from datetime import date, datetime, timezone

from intake.infrastructure.db import business_record_repository
from intake.infrastructure.db import connection as db


class DummyCursor:
    def __init__(self, executed, row):
        self.executed = executed
        self.row = row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params):
        self.executed.append((sql, params))

    def fetchone(self):
        return self.row


class DummyConnection:
    def __init__(self, executed, row):
        self.executed = executed
        self.row = row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return DummyCursor(self.executed, self.row)


class DummyPool:
    def __init__(self, row=None):
        self.executed = []
        self.row = row

    def connection(self):
        return DummyConnection(self.executed, self.row)


def _row(inserted):
    return {
        "key": "INV1",
        "uploader_username": None,
        "pdf_filename": None,
        "pdf_url": None,
        "document_id": None,
        "customer_name": "Unknown Customer",
        "total_amount": 0,
        "record_date": date(2024, 5, 1),
        "status": "pending",
        "updated_at": datetime.now(timezone.utc),
        "inserted": inserted,
    }


def test_upsert_is_one_conflict_aware_statement(monkeypatch):
    pool = DummyPool(_row(inserted=True))
    monkeypatch.setattr(db, "get_pool", lambda: pool)

    created, record = business_record_repository.upsert_record(
        "INV1", {"status": "paid"}, defaults={"status": "pending", "customer_name": "Unknown Customer"}
    )

    assert created is True
    assert record.key == "INV1"
    assert len(pool.executed) == 1
    sql, params = pool.executed[0]
    assert "ON CONFLICT (key) DO UPDATE" in sql
    assert "xmax = 0" in sql
    # New rows get the value or the default; existing rows only the supplied value.
    assert params["status"] == "paid"
    assert params["customer_name"] == "Unknown Customer"
    assert params["new_customer_name"] is None
    assert params["new_status"] == "paid"


def test_upsert_reports_update_of_existing_row(monkeypatch):
    pool = DummyPool(_row(inserted=False))
    monkeypatch.setattr(db, "get_pool", lambda: pool)

    created, _ = business_record_repository.upsert_record("INV1", {})

    assert created is False
