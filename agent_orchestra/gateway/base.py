"""
Model Gateway boundary.

A gateway turns the full conversation plus the available tool schemas into
the model's next action. It must treat the conversation as read-only.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import ConversationState, PlannerOutcome


class ModelGateway(ABC):
    """Adapter between the engine and a reasoning endpoint."""

    @abstractmethod
    def plan(
        self, state: ConversationState, tools: Sequence[dict] = ()
    ) -> PlannerOutcome:
        """
        Ask the model for the next action.

        Args:
            state: Full conversation history for the execution.
            tools: OpenAI function-calling definitions of available tools.

        Returns:
            ``FinalAnswer`` or ``ToolRequests``.

        Raises:
            ModelUnavailableError: Transient endpoint failure.
            ModelRejectedError: The endpoint refused the request.
            ResponseParseError: The response is neither an answer nor tool calls.
        """

    def close(self) -> None:
        """Release client resources."""

    @property
    def model_name(self) -> str:
        """Model identifier recorded on tracing generations."""
        return type(self).__name__
