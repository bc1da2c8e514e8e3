"""
Data models for Agent Orchestra.
"""

from .policy import RetryPolicy
from .conversation import (
    TurnType,
    ToolCallStatus,
    ToolCall,
    UserTaskTurn,
    ModelResponseTurn,
    ToolResultTurn,
    Turn,
    ConversationState,
    FinalAnswer,
    ToolRequest,
    ToolRequests,
    PlannerOutcome,
    make_call_id,
    call_sequence,
)
from .execution import (
    ExecutionStatus,
    ExecutionConfig,
    ErrorRecord,
    Execution,
    ExecutionResult,
    TERMINAL_STATUSES,
)
from .config import (
    ModelConfig,
    StoreConfig,
    SearxngConfig,
    ToolsConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)

__all__ = [
    # Policy
    "RetryPolicy",
    # Conversation
    "TurnType",
    "ToolCallStatus",
    "ToolCall",
    "UserTaskTurn",
    "ModelResponseTurn",
    "ToolResultTurn",
    "Turn",
    "ConversationState",
    "FinalAnswer",
    "ToolRequest",
    "ToolRequests",
    "PlannerOutcome",
    "make_call_id",
    "call_sequence",
    # Execution
    "ExecutionStatus",
    "ExecutionConfig",
    "ErrorRecord",
    "Execution",
    "ExecutionResult",
    "TERMINAL_STATUSES",
    # Config models
    "ModelConfig",
    "StoreConfig",
    "SearxngConfig",
    "ToolsConfig",
    "ServerConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
]
