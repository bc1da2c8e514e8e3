"""
Execution endpoints.

POST /v1/executions runs a task to a terminal status and returns the
result shape; GET /v1/executions/{id} reads a stored execution back.
"""

import dataclasses
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import NotFoundError
from ...orchestration import ExecutionEngine
from ...tracing import get_tracing_client
from ..dependencies import get_engine
from ..schemas import (
    ExecutionRequest,
    ExecutionResponse,
    ToolInfo,
    ToolListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _flush_tracing() -> None:
    """Flush pending tracing events."""
    client = get_tracing_client()
    if client:
        client.flush()


@router.get(
    "/v1/tools",
    response_model=ToolListResponse,
    summary="List tools",
    description="List the tools the model may call, with their input schemas.",
)
def list_tools(engine: ExecutionEngine = Depends(get_engine)) -> ToolListResponse:
    return ToolListResponse(
        data=[
            ToolInfo(
                name=tool.name,
                description=tool.description,
                parameters=tool.input_schema,
            )
            for tool in engine.registry.all_tools().values()
        ]
    )


@router.post(
    "/v1/executions",
    response_model=ExecutionResponse,
    response_model_exclude_none=True,
    summary="Run a task",
    description=(
        "Run a task through the reasoning loop until it completes, fails, "
        "times out or exhausts its iteration budget."
    ),
)
def create_execution(
    request: ExecutionRequest,
    include_trace: bool = Query(default=False, alias="includeTrace"),
    engine: ExecutionEngine = Depends(get_engine),
) -> ExecutionResponse:
    overrides = request.config.model_dump(exclude_none=True) if request.config else {}
    try:
        config = dataclasses.replace(engine.default_config, **overrides)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Received task: %s", request.task[:100])
    try:
        result = engine.run_execution(request.task, config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        _flush_tracing()

    logger.info(
        "[%s] Finished with status %s", result.execution_id, result.status.value
    )
    return ExecutionResponse.from_result(result, include_trace=include_trace)


@router.get(
    "/v1/executions/{execution_id}",
    response_model=ExecutionResponse,
    response_model_exclude_none=True,
    summary="Get execution",
    description="Read the current state of a stored execution.",
)
def get_execution(
    execution_id: str,
    include_trace: bool = Query(default=False, alias="includeTrace"),
    engine: ExecutionEngine = Depends(get_engine),
) -> ExecutionResponse:
    try:
        result = engine.get_execution(execution_id)
    except (NotFoundError, ValueError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ExecutionResponse.from_result(result, include_trace=include_trace)
