"""
Orchestration core: status machine, tool-batch dispatcher and the
Execution Engine that drives the reasoning loop.
"""

from .state_machine import ALLOWED_TRANSITIONS, can_transition, ensure_transition
from .dispatcher import ToolDispatcher
from .engine import ExecutionEngine, default_execution_id, run_execution

__all__ = [
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "ensure_transition",
    "ToolDispatcher",
    "ExecutionEngine",
    "default_execution_id",
    "run_execution",
]
