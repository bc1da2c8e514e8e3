"""
Tool-batch dispatcher.

Runs every call of one model response as a fan-out/fan-in batch on a
thread pool bounded by the execution's tool concurrency. Each call is
retried independently by the Retry Governor; a call that fails for good
becomes a failed ``ToolResultTurn`` instead of an exception, so the model
sees the failure as data.
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

from ..errors import RetriesExhaustedError
from ..models import (
    ErrorRecord,
    RetryPolicy,
    ToolCall,
    ToolCallStatus,
    ToolResultTurn,
    call_sequence,
)
from ..retry import RetryGovernor
from ..tools import ToolRegistry
from ..tracing import TracingContext

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Dispatches a batch of tool calls and joins on all of them."""

    def __init__(self, registry: ToolRegistry, governor: RetryGovernor):
        self.registry = registry
        self.governor = governor

    def dispatch(
        self,
        calls: Sequence[ToolCall],
        policy: RetryPolicy,
        concurrency: Optional[int] = None,
        execution_id: Optional[str] = None,
        tracing_context: Optional[TracingContext] = None,
    ) -> list[ToolResultTurn]:
        """
        Run ``calls`` and return one result turn per call.

        Blocks until every call is terminal. Results are ordered by call id,
        independent of completion order.
        """
        if not calls:
            return []

        max_workers = len(calls) if concurrency is None else min(concurrency, len(calls))
        id_prefix = f"[{execution_id}] " if execution_id else ""
        logger.info(
            "%sDispatching %d tool call(s) with concurrency %d",
            id_prefix,
            len(calls),
            max_workers,
        )

        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tool-call"
        ) as pool:
            futures = [
                pool.submit(self._run_call, call, policy, id_prefix, tracing_context)
                for call in calls
            ]
            results = [future.result() for future in futures]

        return sorted(results, key=lambda r: call_sequence(r.call_id))

    def _run_call(
        self,
        call: ToolCall,
        policy: RetryPolicy,
        id_prefix: str,
        tracing_context: Optional[TracingContext],
    ) -> ToolResultTurn:
        if tracing_context is None:
            return self._invoke_with_retry(call, policy, id_prefix)

        with tracing_context.span(
            name=f"tool_{call.tool_name}",
            input=call.arguments,
            metadata={"call_id": call.id},
        ) as span:
            result = self._invoke_with_retry(call, policy, id_prefix)
            if result.succeeded:
                span.set_output(result.output)
            else:
                span.set_status("error")
                span.set_output(result.error)
            return result

    def _invoke_with_retry(
        self, call: ToolCall, policy: RetryPolicy, id_prefix: str
    ) -> ToolResultTurn:
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            # Handlers get a private copy; the recorded call stays as requested.
            return self.registry.invoke(call.tool_name, copy.deepcopy(call.arguments))

        logger.debug(
            "%s%s %s -> %s",
            id_prefix,
            call.id,
            call.tool_name,
            ToolCallStatus.RUNNING.value,
        )
        try:
            output = self.governor.execute(
                attempt, policy, description=f"{id_prefix}tool '{call.tool_name}' ({call.id})"
            )
        except RetriesExhaustedError as e:
            return self._failed(call, ErrorRecord.from_exception(e), id_prefix)
        except Exception as e:
            record = ErrorRecord.from_exception(e)
            return self._failed(
                call,
                ErrorRecord(kind=record.kind, message=record.message, attempts=attempts),
                id_prefix,
            )

        logger.info(
            "%s%s %s -> %s (%d attempt(s))",
            id_prefix,
            call.id,
            call.tool_name,
            ToolCallStatus.SUCCEEDED.value,
            attempts,
        )
        return ToolResultTurn(
            call_id=call.id,
            tool_name=call.tool_name,
            status=ToolCallStatus.SUCCEEDED,
            output=output,
            attempts=attempts,
        )

    @staticmethod
    def _failed(call: ToolCall, record: ErrorRecord, id_prefix: str) -> ToolResultTurn:
        logger.warning(
            "%s%s %s -> %s [%s] after %d attempt(s): %s",
            id_prefix,
            call.id,
            call.tool_name,
            ToolCallStatus.FAILED.value,
            record.kind.value,
            record.attempts,
            record.message,
        )
        return ToolResultTurn(
            call_id=call.id,
            tool_name=call.tool_name,
            status=ToolCallStatus.FAILED,
            error=record.to_dict(),
            attempts=record.attempts,
        )
