"""
Execution status transitions.

    CREATED -> PLANNING -> AWAITING_TOOLS | COMPLETED | FAILED | TIMED_OUT | ITERATIONS_EXHAUSTED
    AWAITING_TOOLS -> PLANNING | FAILED

Any non-terminal status may also fail (persistence conflicts, fatal errors).
Terminal statuses have no outgoing transitions.
"""

from ..errors import InvalidTransitionError
from ..models import ExecutionStatus

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.CREATED: frozenset(
        {ExecutionStatus.PLANNING, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.PLANNING: frozenset(
        {
            ExecutionStatus.AWAITING_TOOLS,
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.TIMED_OUT,
            ExecutionStatus.ITERATIONS_EXHAUSTED,
        }
    ),
    ExecutionStatus.AWAITING_TOOLS: frozenset(
        {ExecutionStatus.PLANNING, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.TIMED_OUT: frozenset(),
    ExecutionStatus.ITERATIONS_EXHAUSTED: frozenset(),
}


def can_transition(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: ExecutionStatus, target: ExecutionStatus) -> None:
    """
    Raises:
        InvalidTransitionError: ``target`` is not reachable from ``current``.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Invalid status transition {current.value} -> {target.value}"
        )
