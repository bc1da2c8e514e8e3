"""
Agent Orchestra - bounded reasoning and tool-use loop for foundation models.

This package provides:
- Execution Engine driving the plan / dispatch / persist loop
- Tool Registry with JSON Schema argument validation
- Model Gateway for OpenAI-compatible endpoints
- Retry/Backoff Governor and versioned State Stores
"""

__version__ = "0.1.0"

from .errors import ErrorKind, OrchestraError
from .models import ExecutionConfig, ExecutionResult, ExecutionStatus, RetryPolicy
from .orchestration import ExecutionEngine, run_execution
from .factory import build_engine

__all__ = [
    "ErrorKind",
    "OrchestraError",
    "ExecutionConfig",
    "ExecutionResult",
    "ExecutionStatus",
    "RetryPolicy",
    "ExecutionEngine",
    "run_execution",
    "build_engine",
]
