from fastapi import Request

from intake.application.execution_monitor import ExecutionMonitor
from intake.application.ingestion_service import IngestionService
from intake.application.progress_registry import ProgressRegistry
from intake.infrastructure.workflow.engine_client import WorkflowEngineClient


def get_registry(request: Request) -> ProgressRegistry:
    return request.app.state.registry


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_monitor(request: Request) -> ExecutionMonitor:
    return request.app.state.monitor


def get_engine_client(request: Request) -> WorkflowEngineClient:
    return request.app.state.engine_client
