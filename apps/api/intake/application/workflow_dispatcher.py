import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from intake.core.domain.errors import DispatchError
from intake.infrastructure.workflow.engine_client import EngineError, WorkflowEngineClient

logger = logging.getLogger(__name__)

LATEST_EXECUTION_FALLBACK = os.environ.get("WORKFLOW_LATEST_EXECUTION_FALLBACK", "").lower() in {
    "1",
    "true",
    "yes",
}
PROCESS_TYPE = "invoice_ocr"


@dataclass(frozen=True)
class JobDescription:
    storage_reference: str
    filename: str
    content_type: str
    uploader_id: Optional[str] = None
    document_id: Optional[str] = None
    stored_filename: Optional[str] = None
    size_bytes: int = 0
    source: str = "api_upload"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "storageReference": self.storage_reference,
            "filename": self.filename,
            "contentType": self.content_type,
            "uploaderId": self.uploader_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "documentId": self.document_id,
            "storedFilename": self.stored_filename,
            "fileSize": self.size_bytes,
            "processType": PROCESS_TYPE,
            "source": self.source,
        }


class WorkflowDispatcher:
    def __init__(
        self, client: WorkflowEngineClient, latest_execution_fallback: bool = LATEST_EXECUTION_FALLBACK
    ) -> None:
        self._client = client
        self._latest_fallback = latest_execution_fallback

    async def dispatch(self, job: JobDescription) -> Optional[str]:
        """
        Hand a stored file to the engine.

        Returns the execution id, or None when the engine accepted the job
        without one. Raises DispatchError when the engine is unreachable or
        rejects the job.
        """
        try:
            execution_id = await self._client.submit(job.to_payload())
        except EngineError as exc:
            raise DispatchError(str(exc), status_code=exc.status_code) from exc

        if execution_id is None and self._latest_fallback:
            execution_id = await self._client.latest_execution_id()
            if execution_id:
                logger.info("Using latest engine execution %s for %s", execution_id, job.filename)

        logger.info("Dispatched %s (execution=%s)", job.filename, execution_id)
        return execution_id
