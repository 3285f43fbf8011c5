import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple

from intake.application.execution_monitor import ExecutionMonitor
from intake.application.progress_registry import JobConflict, ProgressRegistry
from intake.application.record_linker import link_document
from intake.application.workflow_dispatcher import JobDescription, WorkflowDispatcher
from intake.core.domain.document import BusinessRecord, DocumentRecord, LinkResult
from intake.core.domain.errors import IntakeError, RecordNotFound, StorageError, ValidationError
from intake.core.domain.upload_job import FailureCause, JobStatus, UploadJob
from intake.infrastructure.db import business_record_repository, document_repository
from intake.infrastructure.messaging import notification_relay as messages
from intake.infrastructure.messaging.notification_relay import NotificationRelay
from intake.infrastructure.storage.object_storage import LocalObjectStorage, StoredObject

logger = logging.getLogger(__name__)

PDF_TYPES = {"application/pdf", "application/x-pdf"}
ACCEPTED_IMAGE_PREFIX = "image/"


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    stream: BinaryIO


@dataclass
class Uploader:
    user_id: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class FileResult:
    job_id: str
    filename: str
    success: bool = False
    storage_path: Optional[str] = None
    public_url: Optional[str] = None
    document_id: Optional[str] = None
    execution_id: Optional[str] = None
    linked_record: Optional[str] = None
    error: Optional[str] = None


def _media_type(incoming: IncomingFile) -> str:
    return (incoming.content_type or "").split(";")[0].strip().lower()


def is_pdf(incoming: IncomingFile) -> bool:
    content_type = _media_type(incoming)
    if content_type in PDF_TYPES:
        return True
    # Some clients send PDFs as a generic binary stream.
    return (
        content_type == "application/octet-stream"
        and Path(incoming.filename or "").suffix.lower() == ".pdf"
    )


def validate_file(incoming: IncomingFile) -> None:
    if is_pdf(incoming) or _media_type(incoming).startswith(ACCEPTED_IMAGE_PREFIX):
        return
    raise ValidationError(
        f"Invalid file type {_media_type(incoming) or 'unknown'!r}. Only PDF and image files are allowed."
    )


class IngestionService:
    """
    Per-file pipeline: validate, store, record, link, dispatch, monitor.

    Files in a batch run concurrently and fail independently; the batch
    result always lists every file.
    """

    def __init__(
        self,
        registry: ProgressRegistry,
        storage: LocalObjectStorage,
        dispatcher: WorkflowDispatcher,
        monitor: ExecutionMonitor,
        relay: NotificationRelay,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.relay = relay

    async def ingest_batch(
        self,
        files: Sequence[IncomingFile],
        uploader: Optional[Uploader] = None,
        notify_address: Optional[str] = None,
        job_ids: Optional[Sequence[str]] = None,
    ) -> List[FileResult]:
        uploader = uploader or Uploader()
        ids = list(job_ids or [])
        tasks = []
        for index, incoming in enumerate(files):
            job_id = ids[index] if index < len(ids) and ids[index] else str(uuid.uuid4())
            tasks.append(self.process_file(job_id, incoming, uploader, notify_address))
        return list(await asyncio.gather(*tasks))

    def _register(self, job_id: str, filename: str, incoming: IncomingFile, notify_address: Optional[str]) -> str:
        """Register the job and return its id, minting a new one if the requested id is live."""
        job = UploadJob(
            job_id=job_id,
            filename=filename,
            content_type=incoming.content_type or "",
            notify_address=notify_address,
            message="Queued for upload.",
        )
        try:
            self.registry.create(job)
        except JobConflict:
            fresh_id = str(uuid.uuid4())
            logger.warning("Job id %s is still in progress; tracking %s as %s", job_id, filename, fresh_id)
            job.job_id = fresh_id
            self.registry.create(job)
        return job.job_id

    async def process_file(
        self,
        job_id: str,
        incoming: IncomingFile,
        uploader: Uploader,
        notify_address: Optional[str] = None,
    ) -> FileResult:
        filename = Path(incoming.filename or "document").name
        job_id = self._register(job_id, filename, incoming, notify_address)
        result = FileResult(job_id=job_id, filename=filename)

        try:
            validate_file(incoming)
            self.registry.update(
                job_id, status=JobStatus.uploading, progress=5, message="Uploading file..."
            )
            stored, document = await self.store(incoming, uploader)
            result.storage_path = stored.path
            result.public_url = stored.public_url
            result.document_id = document.id
            self.registry.update(
                job_id,
                progress=15,
                size_bytes=stored.size_bytes,
                document_id=document.id,
                message="File stored; dispatching for extraction...",
            )

            link = await self.link_on_upload(document)
            if link:
                result.linked_record = link.business_key

            execution_id = await self.dispatcher.dispatch(
                JobDescription(
                    storage_reference=stored.public_url,
                    filename=filename,
                    content_type=incoming.content_type or "",
                    uploader_id=uploader.user_id,
                    document_id=document.id,
                    stored_filename=stored.stored_name,
                    size_bytes=stored.size_bytes,
                )
            )
        except IntakeError as exc:
            self._fail(job_id, exc.message, exc.cause)
            result.error = exc.message
            return result
        except Exception as exc:
            logger.exception("Unexpected failure ingesting %s (job %s)", filename, job_id)
            self._fail(job_id, str(exc) or exc.__class__.__name__, FailureCause.internal_error)
            result.error = str(exc) or exc.__class__.__name__
            return result

        self.registry.update(
            job_id,
            status=JobStatus.dispatched,
            progress=20,
            execution_id=execution_id,
            message="Sent for extraction.",
        )
        result.success = True
        result.execution_id = execution_id
        await self.relay.send(notify_address, messages.started_message(filename))

        if execution_id:
            self.monitor.start(job_id, execution_id)
        else:
            await self.monitor.complete_untracked(job_id)
        return result

    async def store(self, incoming: IncomingFile, uploader: Uploader) -> Tuple[StoredObject, DocumentRecord]:
        """
        Write the bytes and insert the document row.

        The row exists iff the write succeeded: if the insert fails the stored
        object is removed again and a StorageError is raised.
        """
        stored = await asyncio.to_thread(self.storage.put, incoming.filename, incoming.stream)
        try:
            document = await asyncio.to_thread(
                document_repository.create_document,
                storage_path=stored.path,
                public_url=stored.public_url,
                filename=stored.stored_name,
                original_filename=Path(incoming.filename or "document").name,
                content_type=incoming.content_type or "",
                size_bytes=stored.size_bytes,
                uploader_id=uploader.user_id,
                uploader_display_name=uploader.display_name,
            )
        except Exception as exc:
            logger.exception("Recording document %s failed", stored.path)
            await asyncio.to_thread(self.storage.delete, stored.path)
            raise StorageError(f"Could not record document: {exc}") from exc
        logger.info("Stored %s as document %s", stored.path, document.id)
        return stored, document

    async def link_on_upload(self, document: DocumentRecord) -> Optional[LinkResult]:
        """Opportunistic link against unlinked records; failures never block the upload."""
        try:
            candidates = await asyncio.to_thread(business_record_repository.list_unlinked_records)
            link = link_document(document, candidates)
            if link is None:
                return None
            linked, _ = await asyncio.to_thread(
                business_record_repository.set_document_link, link.business_key, document.id
            )
        except Exception:
            logger.warning("Linking document %s at upload failed", document.id, exc_info=True)
            return None
        if not linked:
            return None
        logger.info(
            "Linked document %s to record %s (%s rule)", document.id, link.business_key, link.rule
        )
        return link

    async def attach_to_record(
        self, key: str, incoming: IncomingFile, uploader: Uploader
    ) -> Tuple[DocumentRecord, BusinessRecord]:
        """
        Store a PDF for a known record and point the record at it.

        Unlike the heuristic link, this replaces whatever the record pointed
        at before. Raises RecordNotFound, ValidationError or StorageError.
        """
        record = await asyncio.to_thread(business_record_repository.get_record, key)
        if record is None:
            raise RecordNotFound(key)
        if not is_pdf(incoming):
            raise ValidationError("Please upload a valid PDF file.")

        stored, document = await self.store(incoming, uploader)
        attached = await asyncio.to_thread(
            business_record_repository.attach_document,
            key,
            document.id,
            stored.public_url,
            stored.stored_name,
        )
        if attached is None:
            raise RecordNotFound(key)
        logger.info("Attached document %s to record %s", document.id, key)
        return document, attached

    def _fail(self, job_id: str, error: str, cause: Optional[FailureCause]) -> None:
        logger.warning("Job %s failed (%s): %s", job_id, cause.value if cause else "-", error)
        self.registry.update(
            job_id,
            status=JobStatus.failed,
            progress=100,
            error=error,
            failure_cause=cause,
            message="Processing failed.",
        )
