"""
Pytest configuration and fixtures for Agent Orchestra tests.
"""

import itertools
from typing import Callable, Sequence, Union

import pytest

from agent_orchestra.config_loader import reset_config_cache
from agent_orchestra.gateway import ModelGateway
from agent_orchestra.models import (
    ConversationState,
    ExecutionConfig,
    PlannerOutcome,
    ToolRequest,
    ToolRequests,
)
from agent_orchestra.orchestration import ExecutionEngine
from agent_orchestra.retry import RetryGovernor
from agent_orchestra.store import InMemoryStateStore
from agent_orchestra.tools import ToolDefinition, ToolRegistry

ECHO_SCHEMA = {
    "type": "object",
    "properties": {"x": {"type": "string"}},
    "required": ["x"],
    "additionalProperties": False,
}

ScriptStep = Union[PlannerOutcome, BaseException, Callable[[ConversationState], PlannerOutcome]]


class ScriptedGateway(ModelGateway):
    """
    Model Gateway stub that plays back a script.

    Each step is an outcome to return, an exception to raise, or a callable
    receiving the conversation. The last step repeats once the script runs out.
    """

    def __init__(self, script: Sequence[ScriptStep]):
        if not script:
            raise ValueError("script must not be empty")
        self.script = list(script)
        self.states: list[ConversationState] = []
        self.tools_seen: list[list[dict]] = []

    @property
    def call_count(self) -> int:
        return len(self.states)

    def plan(self, state, tools=()):
        self.states.append(state)
        self.tools_seen.append(list(tools))
        index = min(len(self.states) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(state)
        return step


class RecordingSleep:
    """Replacement for time.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FixedJitter:
    """Jitter source that always draws the same factor."""

    def __init__(self, factor: float = 1.0):
        self.factor = factor

    def uniform(self, a: float, b: float) -> float:
        return self.factor


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(InMemoryStateStore):
    """In-memory store that remembers every status it was asked to persist."""

    def __init__(self):
        super().__init__()
        self.statuses: list[str] = []

    def create(self, execution, turns=()):
        self.statuses.append(execution.status.value)
        return super().create(execution, turns)

    def compare_and_swap(self, execution_id, expected_version, execution, new_turns=()):
        version = super().compare_and_swap(
            execution_id, expected_version, execution, new_turns
        )
        self.statuses.append(execution.status.value)
        return version


def echo_request(x: str = "a") -> ToolRequests:
    return ToolRequests(requests=(ToolRequest(tool_name="echo", arguments={"x": x}),))


def echo_tool() -> ToolDefinition:
    return ToolDefinition(
        name="echo",
        description="Return the given text",
        input_schema=ECHO_SCHEMA,
        handler=lambda arguments: arguments["x"],
    )


@pytest.fixture(autouse=True)
def clear_config_cache():
    """Every test starts without a cached AppConfig."""
    reset_config_cache()
    yield
    reset_config_cache()


@pytest.fixture
def registry():
    """Registry holding a single idempotent ``echo`` tool."""
    registry = ToolRegistry()
    registry.register(echo_tool())
    return registry


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def governor(sleeps):
    return RetryGovernor(sleep=sleeps, rng=FixedJitter(1.0))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(registry, store, governor, clock):
    """Build an engine around a scripted gateway with deterministic ids."""

    def _make(script, config=None, **overrides) -> tuple[ExecutionEngine, ScriptedGateway]:
        gateway = overrides.pop("gateway", None) or ScriptedGateway(script)
        counter = itertools.count(1)
        engine = ExecutionEngine(
            gateway=gateway,
            registry=overrides.pop("registry", registry),
            store=overrides.pop("store", store),
            governor=governor,
            default_config=config or ExecutionConfig(),
            clock=clock,
            id_factory=lambda: f"exec-{next(counter):04d}",
        )
        return engine, gateway

    return _make
