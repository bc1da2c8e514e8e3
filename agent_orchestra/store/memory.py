"""
In-memory state store.

Suitable for tests and single-process deployments. Records are deep-copied
on the way in and out so callers never share mutable state with the store.
"""

import copy
import logging
import threading
from typing import Sequence

from ..errors import AlreadyExistsError, NotFoundError, VersionConflictError
from ..models import ConversationState, Execution, Turn
from .base import StateStore, StoredExecution

logger = logging.getLogger(__name__)


class InMemoryStateStore(StateStore):
    """Lock-guarded dict of execution id -> stored snapshot."""

    def __init__(self) -> None:
        self._records: dict[str, StoredExecution] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def create(self, execution: Execution, turns: Sequence[Turn] = ()) -> int:
        with self._lock:
            if execution.id in self._records:
                raise AlreadyExistsError(f"Execution '{execution.id}' already exists")
            stored = copy.deepcopy(execution)
            stored.version = 0
            self._records[execution.id] = StoredExecution(
                execution=stored,
                state=ConversationState().append(*copy.deepcopy(list(turns))),
                version=0,
            )
        logger.debug("Created execution %s", execution.id)
        return 0

    def load(self, execution_id: str) -> StoredExecution:
        with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                raise NotFoundError(f"Execution '{execution_id}' not found")
            return copy.deepcopy(record)

    def compare_and_swap(
        self,
        execution_id: str,
        expected_version: int,
        execution: Execution,
        new_turns: Sequence[Turn] = (),
    ) -> int:
        with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                raise NotFoundError(f"Execution '{execution_id}' not found")
            if record.version != expected_version:
                raise VersionConflictError(
                    execution_id, expected=expected_version, actual=record.version
                )
            new_version = expected_version + 1
            stored = copy.deepcopy(execution)
            stored.version = new_version
            self._records[execution_id] = StoredExecution(
                execution=stored,
                state=record.state.append(*copy.deepcopy(list(new_turns))),
                version=new_version,
            )
        logger.debug("Execution %s now at version %d", execution_id, new_version)
        return new_version

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)
