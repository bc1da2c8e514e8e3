"""
Conversation state: the append-only, replayable history of an execution.

Turns are immutable values. ``ConversationState.append`` returns a new
state and refuses tool results that are orphaned or duplicated, so the
history handed to the Model Gateway can never be corrupted in place.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterator, Optional, Union

from ..errors import ConversationIntegrityError

_CALL_SEQUENCE = re.compile(r"(\d+)$")


class TurnType(str, Enum):
    USER_TASK = "user_task"
    MODEL_RESPONSE = "model_response"
    TOOL_RESULT = "tool_result"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.SUCCEEDED, ToolCallStatus.FAILED)


def make_call_id(sequence: int) -> str:
    return f"call_{sequence:05d}"


def call_sequence(call_id: str) -> tuple[int, str]:
    """Sort key that orders call ids by their number, past the zero padding too."""
    match = _CALL_SEQUENCE.search(call_id)
    return (int(match.group(1)) if match else -1, call_id)


@dataclass(frozen=True)
class ToolCall:
    """
    A tool invocation requested by the model.

    ``status`` is the status at request time and stays ``PENDING`` in the
    stored model response, which is never rewritten. The terminal status
    lives on the matching ``ToolResultTurn``; use
    ``ConversationState.call_status`` or ``resolved_turns`` to read it.
    """

    id: str
    tool_name: str
    arguments: dict = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING


@dataclass(frozen=True)
class UserTaskTurn:
    task: str

    @property
    def type(self) -> TurnType:
        return TurnType.USER_TASK


@dataclass(frozen=True)
class ModelResponseTurn:
    text: Optional[str] = None
    tool_calls: tuple[ToolCall, ...] = ()
    iteration: int = 0

    @property
    def type(self) -> TurnType:
        return TurnType.MODEL_RESPONSE

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


@dataclass(frozen=True)
class ToolResultTurn:
    call_id: str
    tool_name: str
    status: ToolCallStatus
    output: Any = None
    error: Optional[dict] = None
    attempts: int = 1

    @property
    def type(self) -> TurnType:
        return TurnType.TOOL_RESULT

    @property
    def succeeded(self) -> bool:
        return self.status == ToolCallStatus.SUCCEEDED


Turn = Union[UserTaskTurn, ModelResponseTurn, ToolResultTurn]


@dataclass(frozen=True)
class ConversationState:
    """Ordered, append-only sequence of turns owned by one execution."""

    turns: tuple[Turn, ...] = ()

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.turns)

    def append(self, *new_turns: Turn) -> "ConversationState":
        """Return a new state with ``new_turns`` appended after integrity checks."""
        calls = self.tool_calls()
        answered = self.answered_call_ids()
        for turn in new_turns:
            if isinstance(turn, ModelResponseTurn):
                for call in turn.tool_calls:
                    if call.id in calls:
                        raise ConversationIntegrityError(
                            f"Duplicate tool call id '{call.id}'"
                        )
                    calls[call.id] = call
            elif isinstance(turn, ToolResultTurn):
                if turn.call_id not in calls:
                    raise ConversationIntegrityError(
                        f"Tool result references unknown call id '{turn.call_id}'"
                    )
                if turn.call_id in answered:
                    raise ConversationIntegrityError(
                        f"Duplicate tool result for call id '{turn.call_id}'"
                    )
                answered.add(turn.call_id)
        return ConversationState(turns=self.turns + tuple(new_turns))

    @property
    def task(self) -> Optional[str]:
        for turn in self.turns:
            if isinstance(turn, UserTaskTurn):
                return turn.task
        return None

    def tool_calls(self) -> dict[str, ToolCall]:
        """All tool calls requested so far, keyed by call id."""
        calls: dict[str, ToolCall] = {}
        for turn in self.turns:
            if isinstance(turn, ModelResponseTurn):
                for call in turn.tool_calls:
                    calls[call.id] = call
        return calls

    def answered_call_ids(self) -> set[str]:
        return {t.call_id for t in self.turns if isinstance(t, ToolResultTurn)}

    def call_status(self, call_id: str) -> ToolCallStatus:
        """Effective status of a call: its result's status, else the requested one."""
        for turn in reversed(self.turns):
            if isinstance(turn, ToolResultTurn) and turn.call_id == call_id:
                return turn.status
        call = self.tool_calls().get(call_id)
        if call is None:
            raise KeyError(call_id)
        return call.status

    def resolved_turns(self) -> list[Turn]:
        """Turns with every requested call carrying its terminal status, if any."""
        statuses = {
            t.call_id: t.status for t in self.turns if isinstance(t, ToolResultTurn)
        }
        resolved: list[Turn] = []
        for turn in self.turns:
            if isinstance(turn, ModelResponseTurn) and turn.tool_calls:
                turn = replace(
                    turn,
                    tool_calls=tuple(
                        replace(c, status=statuses.get(c.id, c.status))
                        for c in turn.tool_calls
                    ),
                )
            resolved.append(turn)
        return resolved

    def last_model_response(self) -> Optional[ModelResponseTurn]:
        for turn in reversed(self.turns):
            if isinstance(turn, ModelResponseTurn):
                return turn
        return None

    def pending_calls(self) -> list[ToolCall]:
        """Calls of the latest model response that have no result yet, by id."""
        last = self.last_model_response()
        if last is None:
            return []
        answered = self.answered_call_ids()
        return sorted(
            (c for c in last.tool_calls if c.id not in answered),
            key=lambda c: call_sequence(c.id),
        )

    def next_call_id(self, offset: int = 0) -> str:
        return make_call_id(len(self.tool_calls()) + offset + 1)

    def tools_used(self) -> list[str]:
        """Distinct tool names in first-use order."""
        seen: list[str] = []
        for call in self.tool_calls().values():
            if call.tool_name not in seen:
                seen.append(call.tool_name)
        return seen

    def to_list(self) -> list[dict]:
        return [turn_to_dict(t) for t in self.turns]

    @classmethod
    def from_list(cls, data: list[dict]) -> "ConversationState":
        return cls().append(*(turn_from_dict(d) for d in data))


# Planner outcomes


@dataclass(frozen=True)
class FinalAnswer:
    text: str


@dataclass(frozen=True)
class ToolRequest:
    tool_name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolRequests:
    requests: tuple[ToolRequest, ...]
    text: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.requests:
            raise ValueError("ToolRequests needs at least one request")
        object.__setattr__(self, "requests", tuple(self.requests))


PlannerOutcome = Union[FinalAnswer, ToolRequests]


# Serialization


def _call_to_dict(call: ToolCall) -> dict:
    return {
        "id": call.id,
        "tool_name": call.tool_name,
        "arguments": call.arguments,
        "status": call.status.value,
    }


def turn_to_dict(turn: Turn) -> dict:
    if isinstance(turn, UserTaskTurn):
        return {"type": TurnType.USER_TASK.value, "task": turn.task}
    if isinstance(turn, ModelResponseTurn):
        return {
            "type": TurnType.MODEL_RESPONSE.value,
            "text": turn.text,
            "tool_calls": [_call_to_dict(c) for c in turn.tool_calls],
            "iteration": turn.iteration,
        }
    return {
        "type": TurnType.TOOL_RESULT.value,
        "call_id": turn.call_id,
        "tool_name": turn.tool_name,
        "status": turn.status.value,
        "output": turn.output,
        "error": turn.error,
        "attempts": turn.attempts,
    }


def turn_from_dict(data: dict) -> Turn:
    turn_type = TurnType(data["type"])
    if turn_type == TurnType.USER_TASK:
        return UserTaskTurn(task=data["task"])
    if turn_type == TurnType.MODEL_RESPONSE:
        return ModelResponseTurn(
            text=data.get("text"),
            tool_calls=tuple(
                ToolCall(
                    id=c["id"],
                    tool_name=c["tool_name"],
                    arguments=c.get("arguments", {}),
                    status=ToolCallStatus(c.get("status", "pending")),
                )
                for c in data.get("tool_calls", [])
            ),
            iteration=data.get("iteration", 0),
        )
    return ToolResultTurn(
        call_id=data["call_id"],
        tool_name=data["tool_name"],
        status=ToolCallStatus(data["status"]),
        output=data.get("output"),
        error=data.get("error"),
        attempts=data.get("attempts", 1),
    )
