import asyncio
import json

import httpx
import pytest

from intake.infrastructure.workflow.engine_client import (
    EngineError,
    EngineNotConfigured,
    ExecutionStatus,
    WorkflowEngineClient,
    canonical_status,
    extract_execution_id,
)


def _client(handler, **kwargs) -> WorkflowEngineClient:
    params = {"webhook_url": "http://engine/webhook/intake", "api_url": "http://engine", "api_key": "k"}
    params.update(kwargs)
    return WorkflowEngineClient(transport=httpx.MockTransport(handler), **params)


@pytest.mark.parametrize(
    "raw,flag,expected",
    [
        ("success", None, "success"),
        ("Completed", None, "success"),
        ("running", True, "success"),
        ("crashed", None, "error"),
        ("canceled", None, "error"),
        ("waiting", None, "running"),
        (None, None, "running"),
    ],
)
def test_canonical_status(raw, flag, expected):
    assert canonical_status(raw, flag) == expected


def test_extract_execution_id_variants():
    assert extract_execution_id('{"executionId": 42}') == "42"
    assert extract_execution_id('[{"id": "abc"}]') == "abc"
    assert extract_execution_id('{"message": "Workflow was started"}') is None
    assert extract_execution_id("Accepted") is None
    assert extract_execution_id("") is None


def test_execution_payload_error_message():
    status = ExecutionStatus.from_payload(
        "7",
        {
            "id": 7,
            "finished": True,
            "status": "error",
            "startedAt": "2024-05-01T12:00:00.000Z",
            "stoppedAt": "2024-05-01T12:01:20.000Z",
            "data": {"resultData": {"error": {"message": "OCR node failed"}}},
        },
    )

    assert status.finished
    assert not status.success
    assert status.error == "OCR node failed"
    assert status.measured_seconds == 80


def test_submit_posts_payload_and_reads_execution_id():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"executionId": "exec-9"})

    client = _client(handler)
    execution_id = asyncio.run(client.submit({"filename": "a.pdf"}))

    assert execution_id == "exec-9"
    assert seen["url"] == "http://engine/webhook/intake"
    assert seen["body"] == {"filename": "a.pdf"}


def test_submit_rejection_carries_status_code():
    client = _client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(EngineError) as excinfo:
        asyncio.run(client.submit({}))

    assert excinfo.value.status_code == 500


def test_submit_without_webhook_is_not_configured():
    client = _client(lambda request: httpx.Response(200), webhook_url="")
    with pytest.raises(EngineNotConfigured):
        asyncio.run(client.submit({}))


def test_get_execution_sends_api_key():
    def handler(request):
        assert request.url.path == "/api/v1/executions/exec-1"
        assert request.headers["X-N8N-API-KEY"] == "k"
        return httpx.Response(200, json={"id": "exec-1", "finished": False, "status": "running"})

    status = asyncio.run(_client(handler).get_execution("exec-1"))

    assert status.status == "running"
    assert not status.finished


def test_get_execution_transport_failure_is_engine_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(EngineError):
        asyncio.run(_client(handler).get_execution("exec-1"))


def test_latest_execution_id():
    def handler(request):
        assert request.url.params["limit"] == "1"
        return httpx.Response(200, json={"data": [{"id": 17}]})

    assert asyncio.run(_client(handler).latest_execution_id()) == "17"
    assert asyncio.run(_client(handler, api_key="").latest_execution_id()) is None


def test_non_object_execution_payload_is_engine_error():
    client = _client(lambda request: httpx.Response(200, json=[{"id": "exec-1"}]))

    with pytest.raises(EngineError):
        asyncio.run(client.get_execution("exec-1"))
