from intake.core.domain.upload_job import JobStatus
from intake.infrastructure.workflow.engine_client import EngineError


def _files(*names, content_type="application/pdf"):
    return [("files", (name, b"%PDF-1.4 test", content_type)) for name in names]


def test_upload_single_pdf(client, app_modules):
    resp = client.post(
        "/documents/upload",
        files=_files("invoice.pdf"),
        data={"uploader_id": "u-1", "uploader_name": "Ann", "job_ids": "job-a"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_files"] == 1
    assert body["success_count"] == 1
    assert body["message"] == "Processed 1 files (1 successful)"
    result = body["results"][0]
    assert result["job_id"] == "job-a"
    assert result["execution_id"] == "exec-1"
    assert result["public_url"].startswith("http://testserver/files/uploads/")
    assert (app_modules["root"] / result["storage_path"]).exists()
    assert app_modules["started"] == [("job-a", "exec-1")]

    status = client.get("/uploads/job-a").json()
    assert status["status"] == "dispatched"
    assert status["progress"] == 20
    assert status["document_id"] == result["document_id"]


def test_upload_partial_batch(client):
    files = _files("a.pdf") + [("files", ("notes.txt", b"hello", "text/plain"))]

    body = client.post("/documents/upload", files=files).json()

    assert body["total_files"] == 2
    assert body["success_count"] == 1
    failed = [r for r in body["results"] if not r["success"]][0]
    assert failed["filename"] == "notes.txt"
    assert "Invalid file type" in failed["error"]


def test_upload_dispatch_failure_reports_per_file(client, app_modules):
    app_modules["engine"].submit_error = EngineError("Engine rejected job (500): boom", status_code=500)

    body = client.post("/documents/upload", files=_files("a.pdf"), data={"job_ids": "job-a"}).json()

    result = body["results"][0]
    assert body["success_count"] == 0
    assert result["success"] is False
    assert result["storage_path"]
    assert result["document_id"] in app_modules["db"].documents

    status = client.get("/uploads/job-a").json()
    assert status["status"] == "failed"
    assert status["failure_cause"] == "dispatch_error"
    assert status["progress"] == 100


def test_upload_without_files_is_rejected(client):
    resp = client.post("/documents/upload", data={"uploader_id": "u-1"})
    assert resp.status_code in (400, 422)


def test_untracked_dispatch_completes_job(client, app_modules):
    app_modules["engine"].execution_id = None

    body = client.post("/documents/upload", files=_files("a.pdf"), data={"job_ids": "job-a"}).json()

    assert body["results"][0]["success"] is True
    status = client.get("/uploads/job-a").json()
    assert status["status"] == "completed"
    assert status["message"] == "Submitted; execution status unknown"


def test_unknown_upload_is_404(client):
    assert client.get("/uploads/missing").status_code == 404
    assert client.delete("/uploads/missing").status_code == 404


def test_list_remove_and_clear_uploads(client, app_modules):
    client.post(
        "/documents/upload",
        files=_files("a.pdf", "b.pdf"),
        data={"job_ids": ["job-a", "job-b"]},
    )
    registry = app_modules["registry"]
    registry.transition("job-b", JobStatus.completed, progress=100)

    listing = client.get("/uploads").json()
    assert listing["total"] == 2

    cleared = client.delete("/uploads").json()
    assert cleared["removed"] == ["job-b"]

    assert client.delete("/uploads/job-a").status_code == 204
    assert client.get("/uploads").json()["total"] == 0


def test_documents_endpoints(client):
    uploaded = client.post("/documents/upload", files=_files("a.pdf")).json()["results"][0]

    listing = client.get("/documents").json()
    assert listing["total"] == 1
    assert listing["documents"][0]["id"] == uploaded["document_id"]

    doc = client.get(f"/documents/{uploaded['document_id']}").json()
    assert doc["original_filename"] == "a.pdf"
    assert client.get("/documents/missing").status_code == 404


def test_health_reports_monitors(client):
    assert client.get("/health").json() == {"status": "ok", "active_monitors": 0}
