"""
Execution records, run configuration and the result shape returned to callers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import ErrorKind, RetriesExhaustedError, classify_error
from .conversation import ConversationState, Turn, turn_to_dict
from .policy import RetryPolicy


class ExecutionStatus(str, Enum):
    CREATED = "created"
    PLANNING = "planning"
    AWAITING_TOOLS = "awaiting_tools"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ITERATIONS_EXHAUSTED = "iterations_exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMED_OUT,
        ExecutionStatus.ITERATIONS_EXHAUSTED,
    }
)


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Per-run options.

    ``tool_concurrency=None`` runs every call of a batch at once.
    """

    max_iterations: int = 10
    timeout_seconds: int = 300
    tool_concurrency: Optional[int] = None
    model_retry: RetryPolicy = field(default_factory=RetryPolicy.for_model_calls)
    tool_retry: RetryPolicy = field(default_factory=RetryPolicy.for_tool_calls)
    store_retry: RetryPolicy = field(default_factory=RetryPolicy.for_store_writes)

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.tool_concurrency is not None and self.tool_concurrency < 1:
            raise ValueError("tool_concurrency must be >= 1")


@dataclass(frozen=True)
class ErrorRecord:
    """Classified failure attached to a terminal execution."""

    kind: ErrorKind
    message: str
    attempts: int = 1

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorRecord":
        if isinstance(error, RetriesExhaustedError):
            return cls(
                kind=classify_error(error.last_error),
                message=str(error.last_error),
                attempts=error.attempts,
            )
        return cls(kind=classify_error(error), message=str(error))

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "attempts": self.attempts}

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorRecord":
        return cls(
            kind=ErrorKind(data["kind"]),
            message=data.get("message", ""),
            attempts=data.get("attempts", 1),
        )


@dataclass
class Execution:
    """
    One run of a task.

    Mutated only by the Execution Engine; the store keeps its own copies.
    """

    id: str
    task: str
    status: ExecutionStatus
    max_iterations: int
    deadline: float
    created_at: float
    updated_at: float
    iteration_count: int = 0
    version: int = 0
    tool_concurrency: Optional[int] = None
    result: Optional[str] = None
    error: Optional[ErrorRecord] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task": self.task,
            "status": self.status.value,
            "max_iterations": self.max_iterations,
            "deadline": self.deadline,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "iteration_count": self.iteration_count,
            "version": self.version,
            "tool_concurrency": self.tool_concurrency,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Execution":
        return cls(
            id=data["id"],
            task=data["task"],
            status=ExecutionStatus(data["status"]),
            max_iterations=data["max_iterations"],
            deadline=data["deadline"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            iteration_count=data.get("iteration_count", 0),
            version=data.get("version", 0),
            tool_concurrency=data.get("tool_concurrency"),
            result=data.get("result"),
            error=ErrorRecord.from_dict(data["error"]) if data.get("error") else None,
        )


@dataclass
class ExecutionResult:
    """What the engine hands back for every terminal (or inspected) execution."""

    execution_id: str
    status: ExecutionStatus
    iteration_count: int
    result: Optional[str] = None
    error: Optional[ErrorRecord] = None
    turns: list[Turn] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)

    @classmethod
    def from_state(
        cls, execution: Execution, state: ConversationState
    ) -> "ExecutionResult":
        return cls(
            execution_id=execution.id,
            status=execution.status,
            iteration_count=execution.iteration_count,
            result=execution.result,
            error=execution.error,
            turns=list(state.turns),
            tools_used=state.tools_used(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Ingress result shape."""
        data: dict[str, Any] = {
            "executionId": self.execution_id,
            "status": self.status.value,
            "iterationCount": self.iteration_count,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data

    def trace(self) -> list[dict]:
        """One dict per turn; requested calls show their terminal status."""
        state = ConversationState(turns=tuple(self.turns))
        return [turn_to_dict(t) for t in state.resolved_turns()]
