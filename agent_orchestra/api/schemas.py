"""
Pydantic schemas for the execution API.

Field names are camelCase on the wire; Python code uses snake_case.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import ExecutionResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecutionOptions(CamelModel):
    """Per-run overrides of the engine defaults."""

    max_iterations: Optional[int] = Field(
        default=None, gt=0, description="Maximum planning steps"
    )
    timeout_seconds: Optional[int] = Field(
        default=None, gt=0, description="Wall-clock budget for the whole execution"
    )
    tool_concurrency: Optional[int] = Field(
        default=None, ge=1, description="Tool calls run at once within a batch"
    )


class ExecutionRequest(CamelModel):
    """Request body for POST /v1/executions."""

    task: str = Field(..., min_length=1, description="The task to run")
    config: Optional[ExecutionOptions] = Field(default=None)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "task": "What is 17 * 23?",
                "config": {"maxIterations": 5, "timeoutSeconds": 60},
            }
        },
    )


class ErrorPayload(CamelModel):
    kind: str
    message: str
    attempts: int = 1


class ExecutionResponse(CamelModel):
    """Result shape for an execution."""

    execution_id: str
    status: str
    iteration_count: int
    result: Optional[str] = None
    error: Optional[ErrorPayload] = None
    tools_used: Optional[list[str]] = None
    trace: Optional[list[dict[str, Any]]] = Field(
        default=None, description="Conversation turns (when includeTrace=true)"
    )

    @classmethod
    def from_result(
        cls, result: ExecutionResult, include_trace: bool = False
    ) -> "ExecutionResponse":
        return cls(
            execution_id=result.execution_id,
            status=result.status.value,
            iteration_count=result.iteration_count,
            result=result.result,
            error=ErrorPayload(**result.error.to_dict()) if result.error else None,
            tools_used=result.tools_used if include_trace else None,
            trace=result.trace() if include_trace else None,
        )


class ToolInfo(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


class ToolListResponse(BaseModel):
    """Response body for GET /v1/tools."""

    object: Literal["list"] = "list"
    data: list[ToolInfo]


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: Literal["healthy", "unhealthy"]
    version: str
    tools: int
