import logging

from fastapi import APIRouter, Depends, HTTPException, status

from intake.infrastructure.workflow.engine_client import (
    EngineError,
    EngineNotConfigured,
    WorkflowEngineClient,
)
from intake.interfaces.api.dependencies import get_engine_client
from intake.interfaces.api.schemas import ExecutionStatusResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/executions/{execution_id}", response_model=ExecutionStatusResponse)
async def execution_status(
    execution_id: str,
    client: WorkflowEngineClient = Depends(get_engine_client),
) -> ExecutionStatusResponse:
    try:
        execution = await client.get_execution(execution_id)
    except EngineNotConfigured as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow engine configuration missing.",
        ) from exc
    except EngineError as exc:
        logger.warning("Execution %s lookup failed: %s", execution_id, exc)
        raise HTTPException(
            status_code=exc.status_code or status.HTTP_502_BAD_GATEWAY,
            detail=f"Workflow engine error: {exc}",
        ) from exc

    return ExecutionStatusResponse(
        id=execution.id,
        status=execution.status,
        finished=execution.finished,
        success=execution.success,
        started_at=execution.started_at,
        stopped_at=execution.stopped_at,
        error=execution.error,
    )
