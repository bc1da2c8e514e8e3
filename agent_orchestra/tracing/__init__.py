"""
Langfuse tracing integration for Agent Orchestra.

Provides observability for planning calls, tool invocations, and the
execution lifecycle.
"""

from .client import (
    TracingClient,
    init_tracing_client,
    get_tracing_client,
    shutdown_tracing,
)
from .context import TracingContext, Observation

__all__ = [
    "TracingClient",
    "init_tracing_client",
    "get_tracing_client",
    "shutdown_tracing",
    "TracingContext",
    "Observation",
]
