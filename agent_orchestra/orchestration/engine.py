"""
Execution Engine - the reasoning loop.

Drives one execution through the status machine in ``state_machine``:

    1. Check the deadline, then the iteration bound.
    2. Ask the Model Gateway for the next action (through the Retry Governor).
    3. A final answer completes the execution.
    4. Tool requests are recorded, dispatched as one batch, and their results
       appended in call-id order before planning again.

Every transition is persisted with a compare-and-swap on the version read
before it. A write that fails (version conflict or exhausted storage
retries) fails the execution without touching the stored record again.
Tool failures are recorded as data; only model failures, persistence
failures and the budgets end an execution early.

The deadline is checked only between steps and counts as exceeded once
the clock is past it; a check at exactly the deadline still plans. A
planning call or tool batch that started before the deadline runs to
completion, including its retries.
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from ..errors import ErrorKind, ResponseParseError, classify_error
from ..gateway import ModelGateway
from ..models import (
    ConversationState,
    ErrorRecord,
    Execution,
    ExecutionConfig,
    ExecutionResult,
    ExecutionStatus,
    FinalAnswer,
    ModelResponseTurn,
    PlannerOutcome,
    ToolCall,
    ToolRequests,
    ToolResultTurn,
    Turn,
    UserTaskTurn,
)
from ..retry import RetryGovernor
from ..store import InMemoryStateStore, StateStore
from ..tools import ToolRegistry
from ..tracing import TracingContext
from .dispatcher import ToolDispatcher
from .state_machine import ensure_transition

logger = logging.getLogger(__name__)


def default_execution_id() -> str:
    return f"exec-{uuid.uuid4().hex[:12]}"


class _PersistenceFailure(Exception):
    """A state write failed; the execution must fail without another write."""

    def __init__(self, error: BaseException):
        super().__init__(str(error))
        self.error = error


@dataclass
class _Run:
    """Working copy of one execution while the engine drives it."""

    execution: Execution
    state: ConversationState
    config: ExecutionConfig
    tracing: TracingContext

    @property
    def id_prefix(self) -> str:
        return f"[{self.execution.id}] "


class ExecutionEngine:
    """
    Coordinates the Model Gateway, Tool Registry, Retry Governor and State
    Store for each execution. Executions share nothing but the store, so one
    engine may run many of them on separate threads.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        store: StateStore,
        governor: Optional[RetryGovernor] = None,
        default_config: Optional[ExecutionConfig] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = default_execution_id,
    ):
        """
        Args:
            gateway: Reasoning endpoint adapter.
            registry: Tools the model may call.
            store: Durable execution state.
            governor: Retry/backoff governor; a default one if not given.
            default_config: Options used when a run passes none, and for resumes.
            clock: Wall-clock source in epoch seconds.
            id_factory: Produces new execution ids.
        """
        self.gateway = gateway
        self.registry = registry
        self.store = store
        self.governor = governor or RetryGovernor()
        self.default_config = default_config or ExecutionConfig()
        self._clock = clock
        self._id_factory = id_factory
        self.dispatcher = ToolDispatcher(registry, self.governor)

    # Public API

    def run_execution(
        self, task: str, config: Optional[ExecutionConfig] = None
    ) -> ExecutionResult:
        """
        Run ``task`` until it reaches a terminal status.

        Returns:
            ExecutionResult for the terminal execution. Failures are reported
            through ``status`` and ``error``, not raised.

        Raises:
            ValueError: ``task`` is empty.
            OrchestraError: The initial record could not be created.
        """
        if not isinstance(task, str) or not task.strip():
            raise ValueError("task must be a non-empty string")
        config = config or self.default_config

        now = self._clock()
        execution = Execution(
            id=self._id_factory(),
            task=task,
            status=ExecutionStatus.CREATED,
            max_iterations=config.max_iterations,
            deadline=now + config.timeout_seconds,
            created_at=now,
            updated_at=now,
            tool_concurrency=config.tool_concurrency,
        )
        state = ConversationState().append(UserTaskTurn(task=task))

        execution.version = self.governor.execute(
            lambda: self.store.create(execution, state.turns),
            config.store_retry,
            description=f"[{execution.id}] create execution",
        )
        logger.info(
            "[%s] Created execution (max_iterations=%d, timeout=%ds)",
            execution.id,
            config.max_iterations,
            config.timeout_seconds,
        )

        run = _Run(execution, state, config, TracingContext(execution.id))
        run.tracing.start_trace(
            name="execution",
            task=task,
            metadata={
                "max_iterations": config.max_iterations,
                "timeout_seconds": config.timeout_seconds,
                "tool_concurrency": config.tool_concurrency,
            },
        )
        return self._drive(run)

    def resume_execution(self, execution_id: str) -> ExecutionResult:
        """
        Continue a persisted execution.

        Terminal executions are returned unchanged. An execution left in
        ``AWAITING_TOOLS`` re-dispatches the calls that have no result yet.

        Raises:
            NotFoundError: No execution with this id.
        """
        stored = self.store.load(execution_id)
        execution = stored.execution
        execution.version = stored.version
        if execution.is_terminal:
            logger.info(
                "[%s] Execution already %s, nothing to resume",
                execution_id,
                execution.status.value,
            )
            return ExecutionResult.from_state(execution, stored.state)

        logger.info(
            "[%s] Resuming execution from %s (iteration %d/%d)",
            execution_id,
            execution.status.value,
            execution.iteration_count,
            execution.max_iterations,
        )
        run = _Run(
            execution, stored.state, self.default_config, TracingContext(execution_id)
        )
        run.tracing.start_trace(
            name="execution_resume",
            task=execution.task,
            metadata={"resumed_from": execution.status.value},
        )
        return self._drive(run)

    def get_execution(self, execution_id: str) -> ExecutionResult:
        """
        Raises:
            NotFoundError: No execution with this id.
        """
        stored = self.store.load(execution_id)
        return ExecutionResult.from_state(stored.execution, stored.state)

    # Loop

    def _drive(self, run: _Run) -> ExecutionResult:
        tools = self.registry.describe()
        try:
            if run.execution.status == ExecutionStatus.CREATED:
                self._commit(run, ExecutionStatus.PLANNING)
            while not run.execution.is_terminal:
                if run.execution.status == ExecutionStatus.AWAITING_TOOLS:
                    self._dispatch_pending(run)
                else:
                    self._plan_step(run, tools)
        except _PersistenceFailure as e:
            self._abort(run, e.error)

        self._log_trace_summary(run)
        result = ExecutionResult.from_state(run.execution, run.state)
        run.tracing.end_trace(
            output=result.to_dict(),
            status="success" if result.status == ExecutionStatus.COMPLETED else "error",
        )
        return result

    def _plan_step(self, run: _Run, tools: Sequence[dict]) -> None:
        execution = run.execution

        if self._clock() > execution.deadline:
            logger.warning("%sDeadline reached before planning", run.id_prefix)
            self._commit(run, ExecutionStatus.TIMED_OUT)
            return

        if execution.iteration_count >= execution.max_iterations:
            logger.warning(
                "%sIteration bound %d reached", run.id_prefix, execution.max_iterations
            )
            self._commit(run, ExecutionStatus.ITERATIONS_EXHAUSTED)
            return

        iteration = execution.iteration_count + 1
        try:
            outcome = self._plan(run, tools, iteration)
        except Exception as e:
            self._fail(run, e)
            return

        if isinstance(outcome, FinalAnswer):
            self._commit(
                run,
                ExecutionStatus.COMPLETED,
                [ModelResponseTurn(text=outcome.text, iteration=iteration)],
                iteration_count=iteration,
                result=outcome.text,
            )
            return

        calls = tuple(
            ToolCall(
                id=run.state.next_call_id(offset),
                tool_name=request.tool_name,
                arguments=copy.deepcopy(request.arguments),
            )
            for offset, request in enumerate(outcome.requests)
        )
        logger.info(
            "%sIteration %d requested %d tool call(s): %s",
            run.id_prefix,
            iteration,
            len(calls),
            ", ".join(f"{c.id}={c.tool_name}" for c in calls),
        )
        self._commit(
            run,
            ExecutionStatus.AWAITING_TOOLS,
            [ModelResponseTurn(text=outcome.text, tool_calls=calls, iteration=iteration)],
            iteration_count=iteration,
        )

    def _plan(self, run: _Run, tools: Sequence[dict], iteration: int) -> PlannerOutcome:
        state = run.state
        with run.tracing.generation(
            name=f"plan_{iteration}",
            model=self.gateway.model_name,
            input={"turns": len(state), "tools": [t["function"]["name"] for t in tools]},
            metadata={"iteration": iteration},
        ) as generation:
            try:
                outcome = self.governor.execute(
                    lambda: self.gateway.plan(state, tools),
                    run.config.model_retry,
                    description=f"{run.id_prefix}planning step {iteration}",
                )
            except Exception as e:
                generation.set_status("error")
                generation.set_output(str(e))
                raise
            if not isinstance(outcome, (FinalAnswer, ToolRequests)):
                generation.set_status("error")
                raise ResponseParseError(
                    f"Model Gateway returned {type(outcome).__name__}, "
                    "expected FinalAnswer or ToolRequests"
                )
            generation.set_output(_describe_outcome(outcome))
            return outcome

    def _dispatch_pending(self, run: _Run) -> None:
        calls = run.state.pending_calls()
        results = self.dispatcher.dispatch(
            calls,
            run.config.tool_retry,
            concurrency=run.execution.tool_concurrency,
            execution_id=run.execution.id,
            tracing_context=run.tracing,
        )
        self._commit(run, ExecutionStatus.PLANNING, results)

    # Persistence

    def _commit(
        self,
        run: _Run,
        status: ExecutionStatus,
        new_turns: Sequence[Turn] = (),
        **changes,
    ) -> None:
        """
        Persist a transition and the turns it appends.

        The run adopts the new record only after the write succeeds.
        """
        current = run.execution
        ensure_transition(current.status, status)
        updated = replace(current, status=status, updated_at=self._clock(), **changes)
        state = run.state.append(*new_turns)

        try:
            updated.version = self.governor.execute(
                lambda: self.store.compare_and_swap(
                    current.id, current.version, updated, list(new_turns)
                ),
                run.config.store_retry,
                description=f"{run.id_prefix}persist {status.value}",
            )
        except Exception as e:
            raise _PersistenceFailure(e) from e

        run.execution = updated
        run.state = state
        logger.info(
            "%s%s -> %s (version %d)",
            run.id_prefix,
            current.status.value,
            status.value,
            updated.version,
        )

    def _fail(self, run: _Run, error: BaseException) -> None:
        record = ErrorRecord.from_exception(error)
        logger.error(
            "%sExecution failed [%s] after %d attempt(s): %s",
            run.id_prefix,
            record.kind.value,
            record.attempts,
            record.message,
        )
        self._commit(run, ExecutionStatus.FAILED, error=record)

    def _abort(self, run: _Run, error: BaseException) -> None:
        """Fail the run in memory only; the stored record is left as it is."""
        record = ErrorRecord.from_exception(error)
        if classify_error(error) == ErrorKind.VERSION_CONFLICT:
            logger.error("%sConcurrent modification detected: %s", run.id_prefix, error)
        else:
            logger.error("%sFailed to persist execution state: %s", run.id_prefix, error)
        run.execution = replace(
            run.execution,
            status=ExecutionStatus.FAILED,
            error=record,
            updated_at=self._clock(),
        )

    def _log_trace_summary(self, run: _Run) -> None:
        """Log a compact trace summary."""
        id_prefix = run.id_prefix
        logger.info("%s%s", id_prefix, "─" * 50)
        logger.info(
            "%sTRACE SUMMARY: %s after %d iteration(s)",
            id_prefix,
            run.execution.status.value,
            run.execution.iteration_count,
        )
        logger.info("%s%s", id_prefix, "─" * 50)
        for index, turn in enumerate(run.state, start=1):
            if isinstance(turn, UserTaskTurn):
                logger.info("%sTurn %d [TASK]: %s", id_prefix, index, _preview(turn.task))
            elif isinstance(turn, ModelResponseTurn):
                if turn.is_final:
                    logger.info(
                        "%sTurn %d [FINAL]: %s", id_prefix, index, _preview(turn.text)
                    )
                else:
                    logger.info(
                        "%sTurn %d [PLAN %d]: %s",
                        id_prefix,
                        index,
                        turn.iteration,
                        ", ".join(c.tool_name for c in turn.tool_calls),
                    )
            elif isinstance(turn, ToolResultTurn):
                detail = turn.output if turn.succeeded else turn.error
                logger.info(
                    "%sTurn %d [%s %s]: %s -> %s",
                    id_prefix,
                    index,
                    turn.call_id,
                    turn.status.value,
                    turn.tool_name,
                    _preview(detail),
                )
        if run.execution.error:
            logger.info(
                "%sError [%s]: %s",
                id_prefix,
                run.execution.error.kind.value,
                run.execution.error.message,
            )


def _preview(value, limit: int = 80) -> str:
    text = "" if value is None else str(value)
    return text[:limit] + "..." if len(text) > limit else text


def _describe_outcome(outcome: PlannerOutcome) -> dict:
    if isinstance(outcome, FinalAnswer):
        return {"final_answer": outcome.text[:500]}
    return {
        "tool_requests": [
            {"tool": r.tool_name, "arguments": r.arguments} for r in outcome.requests
        ]
    }


def run_execution(
    task: str,
    config: Optional[ExecutionConfig] = None,
    *,
    gateway: ModelGateway,
    registry: ToolRegistry,
    store: Optional[StateStore] = None,
) -> ExecutionResult:
    """Run one task with a throwaway engine (in-memory store unless given one)."""
    engine = ExecutionEngine(
        gateway=gateway,
        registry=registry,
        store=store or InMemoryStateStore(),
        default_config=config,
    )
    return engine.run_execution(task)
