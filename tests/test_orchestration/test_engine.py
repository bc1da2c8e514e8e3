"""
Tests for the Execution Engine.

Tests cover:
- Completion, tool round trips and the iteration bound
- Tool failures recorded as data
- Model failures and persistence conflicts failing the execution
- Deadline handling with a controllable clock
- Deterministic replay and resume
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from agent_orchestra.errors import (
    ErrorKind,
    ModelRejectedError,
    ModelUnavailableError,
    NotFoundError,
    ResponseParseError,
    StorageUnavailableError,
    ToolExecutionError,
)
from agent_orchestra.models import (
    ConversationState,
    Execution,
    ExecutionConfig,
    ExecutionStatus,
    FinalAnswer,
    ModelResponseTurn,
    RetryPolicy,
    ToolCall,
    ToolCallStatus,
    ToolRequest,
    ToolRequests,
    ToolResultTurn,
    UserTaskTurn,
)
from agent_orchestra.orchestration import run_execution
from agent_orchestra.store import InMemoryStateStore
from agent_orchestra.tools import ToolDefinition, ToolRegistry

from conftest import ECHO_SCHEMA, ScriptedGateway, echo_request


def echo_back(state: ConversationState) -> FinalAnswer:
    """Answer with the output of the latest tool result."""
    last = state.turns[-1]
    assert isinstance(last, ToolResultTurn)
    return FinalAnswer(text=str(last.output))


class TestScenarios:
    """End-to-end runs against a scripted gateway."""

    def test_final_answer_on_first_call(self, make_engine):
        """A direct answer completes after one iteration."""
        engine, gateway = make_engine([FinalAnswer("hello")])

        result = engine.run_execution("echo hello")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.iteration_count == 1
        assert result.result == "hello"
        assert result.error is None
        assert gateway.call_count == 1
        assert [type(t) for t in result.turns] == [UserTaskTurn, ModelResponseTurn]

    def test_tool_call_then_final_answer(self, make_engine):
        """One tool round trip completes after exactly two iterations."""
        engine, gateway = make_engine([echo_request("a"), echo_back])

        result = engine.run_execution("echo a via the tool")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.iteration_count == 2
        assert result.result == "a"
        calls = [c for t in result.turns if isinstance(t, ModelResponseTurn) for c in t.tool_calls]
        results = [t for t in result.turns if isinstance(t, ToolResultTurn)]
        assert len(calls) == 1
        assert len(results) == 1
        assert calls[0].tool_name == "echo"
        assert calls[0].arguments == {"x": "a"}
        assert results[0].call_id == calls[0].id
        assert results[0].status == ToolCallStatus.SUCCEEDED
        assert result.tools_used == ["echo"]

    def test_iteration_bound_of_one(self, make_engine):
        """A model that never answers stops after the single allowed iteration."""
        engine, gateway = make_engine([echo_request()])

        result = engine.run_execution("loop forever", ExecutionConfig(max_iterations=1))

        assert result.status == ExecutionStatus.ITERATIONS_EXHAUSTED
        assert result.iteration_count == 1
        assert gateway.call_count == 1
        assert result.error is None

    @pytest.mark.parametrize("bound", [2, 3, 5])
    def test_iteration_count_never_exceeds_bound(self, make_engine, bound):
        """Exhaustion happens exactly when the next planning step would exceed the bound."""
        engine, gateway = make_engine([echo_request()])

        result = engine.run_execution("loop", ExecutionConfig(max_iterations=bound))

        assert result.status == ExecutionStatus.ITERATIONS_EXHAUSTED
        assert result.iteration_count == bound
        assert gateway.call_count == bound

    def test_answer_on_last_allowed_iteration_completes(self, make_engine):
        """An answer on the final allowed step is a completion, not exhaustion."""
        engine, _ = make_engine([echo_request(), FinalAnswer("done")])

        result = engine.run_execution("task", ExecutionConfig(max_iterations=2))

        assert result.status == ExecutionStatus.COMPLETED
        assert result.iteration_count == 2

    def test_gateway_sees_full_history_and_tools(self, make_engine):
        """Every planning call receives the whole conversation and the tool schemas."""
        engine, gateway = make_engine([echo_request("a"), echo_back])

        engine.run_execution("task")

        assert len(gateway.states[0]) == 1
        assert len(gateway.states[1]) == 3
        assert gateway.tools_seen[0][0]["function"]["name"] == "echo"

    def test_empty_task_rejected(self, make_engine):
        """An empty task is a caller error."""
        engine, _ = make_engine([FinalAnswer("x")])

        with pytest.raises(ValueError):
            engine.run_execution("   ")

    def test_persisted_state_matches_result(self, make_engine, store):
        """The stored record ends in the same status with the same turns."""
        engine, _ = make_engine([echo_request("a"), echo_back])

        result = engine.run_execution("task")
        stored = store.load(result.execution_id)

        assert stored.execution.status == ExecutionStatus.COMPLETED
        assert stored.execution.result == "a"
        assert list(stored.state.turns) == result.turns
        assert store.statuses == [
            "created",
            "planning",
            "awaiting_tools",
            "planning",
            "completed",
        ]

    def test_result_shape(self, make_engine):
        """to_dict produces the ingress result shape."""
        engine, _ = make_engine([FinalAnswer("hello")])

        data = engine.run_execution("echo hello").to_dict()

        assert data == {
            "executionId": "exec-0001",
            "status": "completed",
            "iterationCount": 1,
            "result": "hello",
        }


class TestToolFailures:
    """Tool failures become data and never fail the execution by themselves."""

    def test_always_failing_registry_returns_to_planning(self, make_engine, store):
        """A registry whose every invocation fails still loops back to planning."""
        failing = MagicMock(spec=ToolRegistry)
        failing.describe.return_value = []
        failing.invoke.side_effect = ToolExecutionError("boom")
        engine, _ = make_engine([echo_request()], registry=failing)

        result = engine.run_execution("task", ExecutionConfig(max_iterations=1))

        assert result.status == ExecutionStatus.ITERATIONS_EXHAUSTED
        assert store.statuses[-2:] == ["planning", "iterations_exhausted"]
        tool_results = [t for t in result.turns if isinstance(t, ToolResultTurn)]
        assert len(tool_results) == 1
        assert tool_results[0].status == ToolCallStatus.FAILED
        assert tool_results[0].error["kind"] == "tool_permanent"
        assert tool_results[0].error["message"] == "boom"

    def test_transient_tool_failure_exhausts_retries(self, make_engine, sleeps):
        """A transient failure is retried per the tool policy, then recorded."""
        attempts = []

        def flaky(arguments):
            attempts.append(arguments)
            raise ToolExecutionError.transient("upstream busy")

        registry = ToolRegistry()
        registry.register(
            ToolDefinition(
                name="echo", description="flaky", input_schema=ECHO_SCHEMA, handler=flaky
            )
        )
        engine, gateway = make_engine(
            [echo_request(), FinalAnswer("recovered")], registry=registry
        )

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.result == "recovered"
        assert len(attempts) == 3
        failed = [t for t in result.turns if isinstance(t, ToolResultTurn)][0]
        assert failed.status == ToolCallStatus.FAILED
        assert failed.attempts == 3
        assert failed.error == {
            "kind": "tool_transient",
            "message": "upstream busy",
            "attempts": 3,
        }
        assert sleeps.delays == [0.5, 1.0]
        # The model saw the failure.
        assert gateway.states[1].turns[-1] == failed

    def test_unknown_tool_is_recorded_not_fatal(self, make_engine):
        """Requesting a tool that does not exist yields a failed result turn."""
        request = ToolRequests(requests=(ToolRequest(tool_name="nope", arguments={}),))
        engine, _ = make_engine([request, FinalAnswer("ok")])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.COMPLETED
        failed = [t for t in result.turns if isinstance(t, ToolResultTurn)][0]
        assert failed.error["kind"] == "unknown_tool"
        assert failed.attempts == 1

    def test_invalid_arguments_are_recorded_not_fatal(self, make_engine):
        """Schema violations fail fast as data."""
        request = ToolRequests(requests=(ToolRequest(tool_name="echo", arguments={"y": 1}),))
        engine, _ = make_engine([request, FinalAnswer("ok")])

        result = engine.run_execution("task")

        failed = [t for t in result.turns if isinstance(t, ToolResultTurn)][0]
        assert result.status == ExecutionStatus.COMPLETED
        assert failed.error["kind"] == "validation"
    def test_call_status_terminal_in_stored_record(self, make_engine, store):
        """The stored request stays as asked; its effective status comes from the result."""
        failing = MagicMock(spec=ToolRegistry)
        failing.describe.return_value = []
        failing.invoke.side_effect = ToolExecutionError("boom")
        engine, _ = make_engine([echo_request(), FinalAnswer("done")], registry=failing)

        result = engine.run_execution("task")

        stored = store.load(result.execution_id).state
        assert result.status == ExecutionStatus.COMPLETED
        assert stored.call_status("call_00001") == ToolCallStatus.FAILED
        assert result.trace()[1]["tool_calls"][0]["status"] == "failed"

    def test_succeeded_call_status_in_trace(self, make_engine):
        engine, _ = make_engine([echo_request(), FinalAnswer("a")])

        result = engine.run_execution("task")

        assert result.trace()[1]["tool_calls"][0]["status"] == "succeeded"

    def test_handler_cannot_rewrite_history(self, make_engine, store):
        """Arguments changed by a handler stay out of the recorded request."""

        def mutating(arguments):
            arguments["x"] = "changed"
            return "ok"

        registry = ToolRegistry()
        registry.register(
            ToolDefinition(
                name="echo", description="mutates", input_schema=ECHO_SCHEMA, handler=mutating
            )
        )
        engine, gateway = make_engine(
            [echo_request("a"), FinalAnswer("done")], registry=registry
        )

        result = engine.run_execution("task")

        seen_by_model = gateway.states[1].tool_calls()["call_00001"]
        stored = store.load(result.execution_id).state.tool_calls()["call_00001"]
        assert seen_by_model.arguments == {"x": "a"}
        assert stored.arguments == {"x": "a"}


class TestModelFailures:
    """Model Gateway failures terminate the execution with an error record."""

    def test_unavailable_model_fails_after_retries(self, make_engine, sleeps):
        engine, gateway = make_engine([ModelUnavailableError("503")])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == ErrorKind.MODEL_UNAVAILABLE
        assert result.error.attempts == 3
        assert gateway.call_count == 3
        assert sleeps.delays == [1.0, 2.0]
        assert result.iteration_count == 0

    @pytest.mark.parametrize(
        "error, kind",
        [
            (ModelRejectedError("bad request"), ErrorKind.MODEL_REJECTED),
            (ResponseParseError("garbled"), ErrorKind.RESPONSE_PARSE),
            (RuntimeError("bug"), ErrorKind.INTERNAL),
        ],
    )
    def test_permanent_model_failure_fails_fast(self, make_engine, error, kind):
        engine, gateway = make_engine([error])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == kind
        assert result.error.attempts == 1
        assert gateway.call_count == 1

    def test_recovers_from_transient_model_failure(self, make_engine):
        engine, _ = make_engine([ModelUnavailableError("blip"), FinalAnswer("ok")])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.iteration_count == 1

    def test_failure_is_persisted(self, make_engine, store):
        engine, _ = make_engine([ModelRejectedError("no")])

        result = engine.run_execution("task")
        stored = store.load(result.execution_id)

        assert stored.execution.status == ExecutionStatus.FAILED
        assert stored.execution.error.kind == ErrorKind.MODEL_REJECTED
    def test_unrecognized_outcome_fails_execution(self, make_engine):
        """A gateway returning neither an answer nor tool requests is a parse failure."""
        engine, gateway = make_engine(["just text"])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == ErrorKind.RESPONSE_PARSE
        assert gateway.call_count == 1


class TestPersistenceConflicts:
    """A version conflict fails the execution and never overwrites the store."""

    def test_concurrent_writer_fails_execution(self, make_engine, store):
        """Another writer bumps the version mid-iteration."""

        def intrude(state):
            execution_id = store.list_ids()[0]
            stored = store.load(execution_id)
            stored.execution.result = "written by someone else"
            store.compare_and_swap(execution_id, stored.version, stored.execution)
            return FinalAnswer("mine")

        engine, _ = make_engine([intrude])

        result = engine.run_execution("task")
        stored = store.load(result.execution_id)

        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == ErrorKind.VERSION_CONFLICT
        assert stored.execution.result == "written by someone else"
        assert stored.execution.status == ExecutionStatus.PLANNING
        assert stored.version == 2
        assert len(stored.state) == 1

    def test_storage_contention_is_retried(self, make_engine, store, sleeps):
        """Transient storage failures are retried with the store policy."""
        original = store.compare_and_swap
        failures = iter([StorageUnavailableError("locked")])

        def flaky_cas(*args, **kwargs):
            error = next(failures, None)
            if error:
                raise error
            return original(*args, **kwargs)

        store.compare_and_swap = flaky_cas
        engine, _ = make_engine([FinalAnswer("ok")])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.COMPLETED
        assert sleeps.delays == [0.1]

    def test_exhausted_storage_retries_fail_execution(self, make_engine, store):
        store.compare_and_swap = MagicMock(side_effect=StorageUnavailableError("down"))
        engine, gateway = make_engine([FinalAnswer("ok")])

        result = engine.run_execution("task")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == ErrorKind.STORAGE_CONTENTION
        assert result.error.attempts == 3
        assert gateway.call_count == 0


class TestDeadline:
    """The deadline is checked at the top of every iteration."""

    def test_expired_deadline_times_out(self, make_engine, clock):
        def slow_tool_request(state):
            clock.advance(120)
            return echo_request()

        engine, gateway = make_engine([slow_tool_request, FinalAnswer("late")])

        result = engine.run_execution("task", ExecutionConfig(timeout_seconds=60))

        assert result.status == ExecutionStatus.TIMED_OUT
        assert result.iteration_count == 1
        assert gateway.call_count == 1
        # The batch that was already running finished.
        tool_results = [t for t in result.turns if isinstance(t, ToolResultTurn)]
        assert len(tool_results) == 1
        assert tool_results[0].succeeded

    def test_within_deadline_completes(self, make_engine, clock):
        def quick(state):
            clock.advance(10)
            return FinalAnswer("fast")

        engine, _ = make_engine([quick])

        result = engine.run_execution("task", ExecutionConfig(timeout_seconds=60))

        assert result.status == ExecutionStatus.COMPLETED

    def test_deadline_recorded_from_creation_time(self, make_engine, store, clock):
        engine, _ = make_engine([FinalAnswer("x")])

        result = engine.run_execution("task", ExecutionConfig(timeout_seconds=30))

        stored = store.load(result.execution_id).execution
        assert stored.created_at == clock.now
        assert stored.deadline == clock.now + 30
    def test_reaching_deadline_exactly_still_plans(self, make_engine, clock):
        """Only a clock past the deadline times the execution out."""

        def request_until_deadline(state):
            clock.advance(60)
            return echo_request()

        engine, gateway = make_engine([request_until_deadline, FinalAnswer("on time")])

        result = engine.run_execution("task", ExecutionConfig(timeout_seconds=60))

        assert result.status == ExecutionStatus.COMPLETED
        assert gateway.call_count == 2


class TestToolBatches:
    """All calls of one response form one batch, joined before planning again."""

    def test_results_ordered_by_call_id(self, make_engine):
        """Completion order does not affect the recorded order."""
        registry = ToolRegistry()

        def slow_echo(arguments):
            time.sleep(0.05 if arguments["x"] == "first" else 0)
            return arguments["x"]

        registry.register(
            ToolDefinition(
                name="echo", description="echo", input_schema=ECHO_SCHEMA, handler=slow_echo
            )
        )
        batch = ToolRequests(
            requests=(
                ToolRequest("echo", {"x": "first"}),
                ToolRequest("echo", {"x": "second"}),
                ToolRequest("echo", {"x": "third"}),
            )
        )
        engine, _ = make_engine([batch, FinalAnswer("done")], registry=registry)

        result = engine.run_execution("task")

        tool_results = [t for t in result.turns if isinstance(t, ToolResultTurn)]
        assert [t.call_id for t in tool_results] == ["call_00001", "call_00002", "call_00003"]
        assert [t.output for t in tool_results] == ["first", "second", "third"]

    def test_call_ids_unique_across_iterations(self, make_engine):
        engine, _ = make_engine([echo_request("a"), echo_request("b"), FinalAnswer("ok")])

        result = engine.run_execution("task")

        ids = [c.id for t in result.turns if isinstance(t, ModelResponseTurn) for c in t.tool_calls]
        assert ids == ["call_00001", "call_00002"]

    def test_concurrency_limit_respected(self, make_engine):
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def tracked(arguments):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.02)
            with lock:
                active[0] -= 1
            return arguments["x"]

        registry = ToolRegistry()
        registry.register(
            ToolDefinition(name="echo", description="echo", input_schema=ECHO_SCHEMA, handler=tracked)
        )
        batch = ToolRequests(requests=tuple(ToolRequest("echo", {"x": str(i)}) for i in range(4)))
        engine, _ = make_engine([batch, FinalAnswer("ok")], registry=registry)

        result = engine.run_execution("task", ExecutionConfig(tool_concurrency=1))

        assert result.status == ExecutionStatus.COMPLETED
        assert peak[0] == 1

    def test_unbounded_batch_runs_calls_together(self, make_engine):
        """Without a limit every call of the batch runs at once."""
        barrier = threading.Barrier(3, timeout=5)

        def rendezvous(arguments):
            barrier.wait()
            return arguments["x"]

        registry = ToolRegistry()
        registry.register(
            ToolDefinition(
                name="echo", description="echo", input_schema=ECHO_SCHEMA, handler=rendezvous
            )
        )
        batch = ToolRequests(requests=tuple(ToolRequest("echo", {"x": str(i)}) for i in range(3)))
        engine, _ = make_engine([batch, FinalAnswer("ok")], registry=registry)

        result = engine.run_execution("task")

        tool_results = [t for t in result.turns if isinstance(t, ToolResultTurn)]
        assert all(t.succeeded for t in tool_results)


class TestReplayAndResume:
    """Re-running against persisted state yields identical turn order."""

    SCRIPT = [
        ToolRequests(requests=(ToolRequest("echo", {"x": "b"}), ToolRequest("echo", {"x": "a"}))),
        echo_request("c"),
        FinalAnswer("abc"),
    ]

    def test_replay_is_deterministic(self, make_engine):
        first, _ = make_engine(self.SCRIPT, store=InMemoryStateStore())
        second, _ = make_engine(self.SCRIPT, store=InMemoryStateStore())

        one = first.run_execution("task")
        two = second.run_execution("task")

        assert one.trace() == two.trace()
        assert one.iteration_count == two.iteration_count == 3

    def test_resume_awaiting_tools_matches_uninterrupted_run(self, make_engine, store, clock):
        """A run interrupted before its batch finished resumes to the same history."""
        reference, _ = make_engine([echo_request("a"), echo_back], store=InMemoryStateStore())
        expected = reference.run_execution("task").trace()

        call = ToolCall(id="call_00001", tool_name="echo", arguments={"x": "a"})
        interrupted = Execution(
            id="exec-0001",
            task="task",
            status=ExecutionStatus.AWAITING_TOOLS,
            max_iterations=10,
            deadline=clock.now + 300,
            created_at=clock.now,
            updated_at=clock.now,
            iteration_count=1,
        )
        store.create(
            interrupted,
            [UserTaskTurn("task"), ModelResponseTurn(tool_calls=(call,), iteration=1)],
        )
        engine, gateway = make_engine([echo_back])

        result = engine.resume_execution("exec-0001")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.trace() == expected
        assert gateway.call_count == 1

    def test_resume_terminal_execution_is_noop(self, make_engine):
        engine, gateway = make_engine([FinalAnswer("hello")])
        done = engine.run_execution("task")

        again = engine.resume_execution(done.execution_id)

        assert again.status == ExecutionStatus.COMPLETED
        assert again.turns == done.turns
        assert gateway.call_count == 1

    def test_resume_unknown_execution(self, make_engine):
        engine, _ = make_engine([FinalAnswer("x")])

        with pytest.raises(NotFoundError):
            engine.resume_execution("exec-missing")


class TestGetExecution:
    def test_get_execution_rebuilds_result(self, make_engine):
        engine, _ = make_engine([echo_request("a"), echo_back])
        result = engine.run_execution("task")

        fetched = engine.get_execution(result.execution_id)

        assert fetched.to_dict() == result.to_dict()
        assert fetched.tools_used == ["echo"]

    def test_get_unknown_execution(self, make_engine):
        engine, _ = make_engine([FinalAnswer("x")])

        with pytest.raises(NotFoundError):
            engine.get_execution("exec-missing")


class TestRunExecutionFunction:
    def test_runs_with_in_memory_store(self, registry):
        gateway = ScriptedGateway([FinalAnswer("hi")])

        result = run_execution(
            "say hi", ExecutionConfig(max_iterations=2), gateway=gateway, registry=registry
        )

        assert result.status == ExecutionStatus.COMPLETED
        assert result.result == "hi"

    def test_policies_come_from_config(self, registry):
        gateway = ScriptedGateway([ModelUnavailableError("down")])
        config = ExecutionConfig(
            model_retry=RetryPolicy(
                max_attempts=1, retryable_error_kinds={ErrorKind.MODEL_UNAVAILABLE}
            )
        )

        result = run_execution("task", config, gateway=gateway, registry=registry)

        assert result.status == ExecutionStatus.FAILED
        assert gateway.call_count == 1
