"""
HTTP client for the external automation engine (n8n REST API + intake webhook).
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

N8N_WEBHOOK_URL = os.environ.get("N8N_WEBHOOK_URL", "")
N8N_URL = os.environ.get("N8N_URL", "").rstrip("/")
N8N_API_KEY = os.environ.get("N8N_API_KEY", "")
WORKFLOW_TIMEOUT_SECONDS = float(os.environ.get("WORKFLOW_TIMEOUT_SECONDS", "15"))
USER_AGENT = "doc-intake/0.1"

SUCCESS_STATUSES = {"success", "succeeded", "completed", "complete", "done", "ok"}
ERROR_STATUSES = {"error", "failed", "failure", "crashed", "canceled", "cancelled", "aborted"}


class EngineError(Exception):
    """Transport-level or protocol-level failure talking to the engine."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EngineNotConfigured(EngineError):
    pass


def canonical_status(raw: Any, success_flag: Any = None) -> str:
    """Collapse the engine's status vocabulary into running/success/error."""
    value = str(raw or "").strip().lower()
    if value in SUCCESS_STATUSES or success_flag is True:
        return "success"
    if value in ERROR_STATUSES:
        return "error"
    return "running"


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparsable engine timestamp %r", value)
        return None


@dataclass(frozen=True)
class ExecutionStatus:
    id: str
    status: str
    finished: bool
    started_at: Optional[datetime]
    stopped_at: Optional[datetime]
    error: Optional[str] = None
    progress: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == "success"

    @property
    def measured_seconds(self) -> Optional[float]:
        if self.started_at is None or self.stopped_at is None:
            return None
        return max(0.0, (self.stopped_at - self.started_at).total_seconds())

    @classmethod
    def from_payload(cls, execution_id: str, payload: Dict[str, Any]) -> "ExecutionStatus":
        status = canonical_status(payload.get("status"), payload.get("success"))
        finished = bool(payload.get("finished")) or status in ("success", "error")
        error = None
        if finished and status != "success":
            result_error = ((payload.get("data") or {}).get("resultData") or {}).get("error") or {}
            error = result_error.get("message") or payload.get("error") or "Execution failed"
        progress = payload.get("progress")
        return cls(
            id=str(payload.get("id") or execution_id),
            status=status,
            finished=finished,
            started_at=parse_timestamp(payload.get("startedAt")),
            stopped_at=parse_timestamp(payload.get("stoppedAt")),
            error=error,
            progress=int(progress) if isinstance(progress, (int, float)) else None,
        )


def extract_execution_id(body: str) -> Optional[str]:
    """Best-effort read of an execution handle from a webhook response."""
    try:
        data = json.loads(body) if body else None
    except ValueError:
        logger.info("Engine webhook response is not JSON; no execution id")
        return None
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return None
    execution_id = data.get("executionId") or data.get("id")
    return str(execution_id) if execution_id else None


class WorkflowEngineClient:
    def __init__(
        self,
        webhook_url: str = N8N_WEBHOOK_URL,
        api_url: str = N8N_URL,
        api_key: str = N8N_API_KEY,
        timeout: float = WORKFLOW_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    @property
    def api_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def _api_headers(self) -> Dict[str, str]:
        return {"X-N8N-API-KEY": self.api_key, "Content-Type": "application/json"}

    async def submit(self, payload: Dict[str, Any]) -> Optional[str]:
        """POST a job to the intake webhook; return the execution id if any."""
        if not self.webhook_url:
            raise EngineNotConfigured("N8N_WEBHOOK_URL is not configured")
        try:
            resp = await self._client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as exc:
            raise EngineError(f"Engine unreachable: {exc}") from exc
        if resp.is_error:
            raise EngineError(
                f"Engine rejected job ({resp.status_code}): {resp.text[:500]}",
                status_code=resp.status_code,
            )
        logger.debug("Engine webhook accepted job (%s)", resp.status_code)
        return extract_execution_id(resp.text)

    async def get_execution(self, execution_id: str) -> ExecutionStatus:
        if not self.api_configured:
            raise EngineNotConfigured("N8N_URL / N8N_API_KEY are not configured")
        url = f"{self.api_url}/api/v1/executions/{execution_id}"
        try:
            resp = await self._client.get(url, headers=self._api_headers())
        except httpx.HTTPError as exc:
            raise EngineError(f"Engine unreachable: {exc}") from exc
        if resp.is_error:
            raise EngineError(
                f"Engine API error ({resp.status_code})", status_code=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise EngineError("Engine returned a non-JSON execution payload") from exc
        if not isinstance(payload, dict):
            raise EngineError(
                f"Engine returned a {type(payload).__name__} instead of an execution object"
            )
        return ExecutionStatus.from_payload(execution_id, payload)

    async def latest_execution_id(self) -> Optional[str]:
        if not self.api_configured:
            return None
        url = f"{self.api_url}/api/v1/executions"
        try:
            resp = await self._client.get(url, headers=self._api_headers(), params={"limit": 1})
        except httpx.HTTPError as exc:
            logger.warning("Could not list engine executions: %s", exc)
            return None
        if resp.is_error:
            logger.warning("Listing engine executions failed (%s)", resp.status_code)
            return None
        try:
            items = resp.json().get("data") or []
        except (ValueError, AttributeError):
            return None
        return str(items[0]["id"]) if items and items[0].get("id") else None

    async def aclose(self) -> None:
        await self._client.aclose()
