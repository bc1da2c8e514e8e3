"""
State Store boundary.

Durable read/write of an execution's full state keyed by execution id,
with optimistic versioning: every write names the version it read, and a
mismatch is reported instead of overwriting.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from ..models import ConversationState, Execution, Turn


@dataclass(frozen=True)
class StoredExecution:
    """Snapshot returned by ``StateStore.load``."""

    execution: Execution
    state: ConversationState
    version: int


class StateStore(ABC):
    """
    Persistence for executions and their conversation state.

    Only the Execution Engine calls ``compare_and_swap``.
    """

    @abstractmethod
    def create(self, execution: Execution, turns: Sequence[Turn] = ()) -> int:
        """
        Persist a new execution with its initial turns.

        Returns:
            The stored version.

        Raises:
            AlreadyExistsError: An execution with this id exists.
        """

    @abstractmethod
    def load(self, execution_id: str) -> StoredExecution:
        """
        Raises:
            NotFoundError: No execution with this id.
        """

    @abstractmethod
    def compare_and_swap(
        self,
        execution_id: str,
        expected_version: int,
        execution: Execution,
        new_turns: Sequence[Turn] = (),
    ) -> int:
        """
        Replace the execution record and append ``new_turns`` atomically.

        Args:
            execution_id: Execution to update.
            expected_version: Version the caller read before modifying.
            execution: New execution record.
            new_turns: Turns appended since ``expected_version``.

        Returns:
            The new version (``expected_version + 1``).

        Raises:
            NotFoundError: No execution with this id.
            VersionConflictError: The stored version differs from ``expected_version``.
        """

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Ids of all stored executions."""
