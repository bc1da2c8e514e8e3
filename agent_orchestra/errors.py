"""
Error taxonomy for the orchestration core.

Every failure raised by a component carries an ``ErrorKind`` so the
Retry Governor can decide between retrying and failing fast, and the
Execution Engine can decide whether a failure is fatal or becomes data.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification attached to every orchestration failure."""

    MODEL_UNAVAILABLE = "model_unavailable"
    MODEL_REJECTED = "model_rejected"
    RESPONSE_PARSE = "response_parse"
    UNKNOWN_TOOL = "unknown_tool"
    VALIDATION = "validation"
    DUPLICATE_TOOL = "duplicate_tool"
    TOOL_TRANSIENT = "tool_transient"
    TOOL_TIMEOUT = "tool_timeout"
    TOOL_BACKPRESSURE = "tool_backpressure"
    TOOL_PERMANENT = "tool_permanent"
    STORAGE_CONTENTION = "storage_contention"
    VERSION_CONFLICT = "version_conflict"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"

    @property
    def is_transient(self) -> bool:
        """Whether failures of this kind may succeed on a later attempt."""
        return self in TRANSIENT_KINDS


TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.MODEL_UNAVAILABLE,
        ErrorKind.TOOL_TRANSIENT,
        ErrorKind.TOOL_TIMEOUT,
        ErrorKind.TOOL_BACKPRESSURE,
        ErrorKind.STORAGE_CONTENTION,
    }
)


class OrchestraError(Exception):
    """Base class for all classified orchestration failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


# Tool Registry


class DuplicateToolError(OrchestraError):
    kind = ErrorKind.DUPLICATE_TOOL


class UnknownToolError(OrchestraError):
    kind = ErrorKind.UNKNOWN_TOOL


class ValidationError(OrchestraError):
    """Tool arguments do not satisfy the tool's input schema."""

    kind = ErrorKind.VALIDATION


class ToolExecutionError(OrchestraError):
    """
    Failure raised by a tool handler.

    Handlers tag the failure with a kind so the Retry Governor can tell
    backpressure or timeouts apart from permanent errors.
    """

    kind = ErrorKind.TOOL_PERMANENT

    @classmethod
    def transient(cls, message: str) -> "ToolExecutionError":
        return cls(message, kind=ErrorKind.TOOL_TRANSIENT)

    @classmethod
    def timeout(cls, message: str) -> "ToolExecutionError":
        return cls(message, kind=ErrorKind.TOOL_TIMEOUT)

    @classmethod
    def backpressure(cls, message: str) -> "ToolExecutionError":
        return cls(message, kind=ErrorKind.TOOL_BACKPRESSURE)


# Model Gateway


class ModelUnavailableError(OrchestraError):
    kind = ErrorKind.MODEL_UNAVAILABLE


class ModelRejectedError(OrchestraError):
    kind = ErrorKind.MODEL_REJECTED


class ResponseParseError(OrchestraError):
    """The endpoint returned content that is neither an answer nor tool calls."""

    kind = ErrorKind.RESPONSE_PARSE


# Retry Governor


class RetriesExhaustedError(OrchestraError):
    """All attempts failed with retryable errors; wraps the last one."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Retries exhausted after {attempts} attempt(s): {last_error}",
            kind=classify_error(last_error),
        )


# State Store


class AlreadyExistsError(OrchestraError):
    kind = ErrorKind.ALREADY_EXISTS


class NotFoundError(OrchestraError):
    kind = ErrorKind.NOT_FOUND


class VersionConflictError(OrchestraError):
    """A write supplied a version other than the one currently stored."""

    kind = ErrorKind.VERSION_CONFLICT

    def __init__(self, execution_id: str, expected: int, actual: int):
        self.execution_id = execution_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on execution '{execution_id}': "
            f"expected {expected}, found {actual}"
        )


class StorageUnavailableError(OrchestraError):
    kind = ErrorKind.STORAGE_CONTENTION


# Engine internals


class InvalidTransitionError(OrchestraError):
    pass


class ConversationIntegrityError(OrchestraError):
    """A tool result is orphaned or duplicates an earlier result."""

    pass


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception to an ErrorKind."""
    if isinstance(error, OrchestraError):
        return error.kind
    if isinstance(error, TimeoutError):
        return ErrorKind.TOOL_TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorKind.TOOL_TRANSIENT
    return ErrorKind.INTERNAL
