"""
Execution-scoped tracing context using Langfuse SDK v3.

One ``TracingContext`` per execution. Children are linked to the root span
through an explicit ``TraceContext`` rather than OTEL's ambient context,
because tool calls run on worker threads where ambient context is lost.
All methods are no-ops when tracing is disabled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """A span or generation; started and ended by the owning context manager."""

    name: str
    as_type: str = "span"
    enabled: bool = False
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    model: Optional[str] = None
    trace_context: Optional[TraceContext] = None
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)

    def start(self) -> None:
        client = get_tracing_client()
        if not self.enabled or not client or not client.client:
            return
        self._start_time = time.time()
        kwargs: dict[str, Any] = {
            "trace_context": self.trace_context,
            "as_type": self.as_type,
            "name": self.name,
            "input": self.input,
            "metadata": self.metadata,
        }
        if self.model:
            kwargs["model"] = self.model
        try:
            self._context_manager = client.client.start_as_current_observation(**kwargs)
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning("Failed to start %s '%s': %s", self.as_type, self.name, e)
            self._observation = None

    def end(self) -> None:
        if not self.enabled or not self._observation:
            return
        try:
            update: dict[str, Any] = {
                "metadata": {
                    "status": self._status,
                    "duration_ms": round((time.time() - self._start_time) * 1000, 2),
                }
            }
            if self._output is not None:
                update["output"] = self._output
            if self._status == "error":
                update["level"] = "ERROR"
            self._observation.update(**update)
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("Failed to end %s '%s': %s", self.as_type, self.name, e)

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status


@dataclass
class TracingContext:
    """Root trace for one execution, with span and generation helpers."""

    execution_id: str
    _root: Optional[Observation] = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "execution",
        task: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled:
            return
        self._root = Observation(
            name=name,
            enabled=True,
            input={"task": task} if task else None,
            metadata={"execution_id": self.execution_id, **(metadata or {})},
        )
        self._root.start()

    def end_trace(
        self,
        output: Optional[Any] = None,
        status: str = "success",
    ) -> None:
        if self._root is None:
            return
        self._root.set_output(output)
        self._root.set_status(status)
        self._root.end()
        self._root = None

    def _child_trace_context(self) -> Optional[TraceContext]:
        root = self._root._observation if self._root else None
        trace_id = getattr(root, "trace_id", None)
        span_id = getattr(root, "id", None)
        if not trace_id or not span_id:
            return None
        return TraceContext(trace_id=trace_id, parent_span_id=span_id)

    @contextmanager
    def span(
        self,
        name: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> Generator[Observation, None, None]:
        observation = Observation(
            name=name,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            trace_context=self._child_trace_context(),
        )
        observation.start()
        try:
            yield observation
        finally:
            observation.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> Generator[Observation, None, None]:
        observation = Observation(
            name=name,
            as_type="generation",
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            model=model,
            trace_context=self._child_trace_context(),
        )
        observation.start()
        try:
            yield observation
        finally:
            observation.end()
