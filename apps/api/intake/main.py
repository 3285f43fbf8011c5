import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from intake.application.execution_monitor import ExecutionMonitor, MonitorPolicy
from intake.application.ingestion_service import IngestionService
from intake.application.progress_registry import ProgressRegistry
from intake.application.workflow_dispatcher import WorkflowDispatcher
from intake.infrastructure.db import connection as db
from intake.infrastructure.db import business_record_repository, document_repository
from intake.infrastructure.messaging.notification_relay import NotificationRelay
from intake.infrastructure.storage.object_storage import UPLOAD_ROOT, LocalObjectStorage
from intake.infrastructure.workflow.engine_client import WorkflowEngineClient
from intake.interfaces.api.routers import callback, documents, executions, records, upload

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    *,
    registry: Optional[ProgressRegistry] = None,
    storage: Optional[LocalObjectStorage] = None,
    engine_client: Optional[WorkflowEngineClient] = None,
    relay: Optional[NotificationRelay] = None,
    policy: Optional[MonitorPolicy] = None,
) -> None:
    """Build the pipeline objects and hang them on app.state."""
    registry = registry or ProgressRegistry()
    engine_client = engine_client or WorkflowEngineClient()
    relay = relay or NotificationRelay()
    monitor = ExecutionMonitor(registry, engine_client, relay, policy or MonitorPolicy.from_env())

    app.state.registry = registry
    app.state.engine_client = engine_client
    app.state.relay = relay
    app.state.monitor = monitor
    app.state.ingestion_service = IngestionService(
        registry=registry,
        storage=storage or LocalObjectStorage(),
        dispatcher=WorkflowDispatcher(engine_client),
        monitor=monitor,
        relay=relay,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_pool()
    document_repository.ensure_table()
    business_record_repository.ensure_table()
    configure_services(app)
    try:
        yield
    finally:
        await app.state.monitor.shutdown()
        await app.state.engine_client.aclose()
        await app.state.relay.aclose()
        db.close_pool()


app = FastAPI(title="Document Intake API", version="0.1.0", lifespan=lifespan)

frontend_origin = os.environ.get("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict:
    monitor = getattr(app.state, "monitor", None)
    return {"status": "ok", "active_monitors": len(monitor.active_jobs()) if monitor else 0}


app.include_router(upload.router)
app.include_router(documents.router)
app.include_router(executions.router)
app.include_router(callback.router)
app.include_router(records.router)
app.mount("/files", StaticFiles(directory=UPLOAD_ROOT, check_dir=False), name="files")


def run() -> None:
    import uvicorn

    uvicorn.run(
        "intake.main:app",
        host=os.environ.get("APP_HOST", "0.0.0.0"),
        port=int(os.environ.get("APP_PORT", "8000")),
    )
