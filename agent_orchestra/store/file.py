"""
JSON file state store.

One document per execution at ``{root}/{execution_id}.json``::

    {"version": 3, "execution": {...}, "turns": [...]}

Writes go to a temp file in the same directory and are moved into place
with ``os.replace``. The version check and the write happen under a
process-wide lock; several processes sharing one directory need a store
with server-side compare-and-swap instead.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Sequence

from ..errors import (
    AlreadyExistsError,
    NotFoundError,
    StorageUnavailableError,
    VersionConflictError,
)
from ..models import ConversationState, Execution, Turn
from ..models.conversation import turn_to_dict
from .base import StateStore, StoredExecution

logger = logging.getLogger(__name__)

SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileStateStore(StateStore):
    """File-backed store with optimistic versioning."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, execution_id: str) -> Path:
        if not SAFE_ID_PATTERN.match(execution_id):
            raise ValueError(f"Invalid execution id '{execution_id}'")
        return self.root / f"{execution_id}.json"

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise
        except (OSError, json.JSONDecodeError) as e:
            raise StorageUnavailableError(f"Cannot read {path.name}: {e}") from e

    def _atomic_write(self, path: Path, document: dict[str, Any]) -> None:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=path.parent, suffix=".tmp", prefix=".exec_"
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(document, f, default=str)
            os.replace(temp_path, path)
        except Exception:
            if Path(temp_path).exists():
                Path(temp_path).unlink()
            raise

    def create(self, execution: Execution, turns: Sequence[Turn] = ()) -> int:
        path = self._path(execution.id)
        state = ConversationState().append(*turns)
        execution_data = execution.to_dict()
        execution_data["version"] = 0
        with self._lock:
            if path.exists():
                raise AlreadyExistsError(f"Execution '{execution.id}' already exists")
            self._atomic_write(
                path,
                {"version": 0, "execution": execution_data, "turns": state.to_list()},
            )
        logger.debug("Created execution %s at %s", execution.id, path)
        return 0

    def load(self, execution_id: str) -> StoredExecution:
        path = self._path(execution_id)
        with self._lock:
            try:
                document = self._read(path)
            except FileNotFoundError:
                raise NotFoundError(f"Execution '{execution_id}' not found") from None
        return StoredExecution(
            execution=Execution.from_dict(document["execution"]),
            state=ConversationState.from_list(document["turns"]),
            version=document["version"],
        )

    def compare_and_swap(
        self,
        execution_id: str,
        expected_version: int,
        execution: Execution,
        new_turns: Sequence[Turn] = (),
    ) -> int:
        path = self._path(execution_id)
        with self._lock:
            try:
                document = self._read(path)
            except FileNotFoundError:
                raise NotFoundError(f"Execution '{execution_id}' not found") from None
            if document["version"] != expected_version:
                raise VersionConflictError(
                    execution_id, expected=expected_version, actual=document["version"]
                )
            # Integrity check before anything reaches disk.
            ConversationState.from_list(document["turns"]).append(*new_turns)

            new_version = expected_version + 1
            execution_data = execution.to_dict()
            execution_data["version"] = new_version
            self._atomic_write(
                path,
                {
                    "version": new_version,
                    "execution": execution_data,
                    "turns": document["turns"] + [turn_to_dict(t) for t in new_turns],
                },
            )
        logger.debug("Execution %s now at version %d", execution_id, new_version)
        return new_version

    def list_ids(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))
