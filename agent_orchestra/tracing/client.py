"""
Langfuse tracing client wrapper with graceful degradation.

Uses the Langfuse SDK v3 (OpenTelemetry-based) API. The client disables
itself when credentials are missing or the endpoint fails ``auth_check()``;
every tracing call is then a no-op and orchestration is unaffected.
"""

import logging
from typing import Any, Optional

from langfuse import Langfuse

logger = logging.getLogger(__name__)


class TracingClient:
    """Langfuse client that never lets tracing failures reach the engine."""

    def __init__(
        self,
        public_key: str = "",
        secret_key: str = "",
        host: str = "",
        debug: bool = False,
        flush_at: Optional[int] = None,
        flush_interval: Optional[float] = None,
    ):
        self._client: Optional[Langfuse] = None
        self._enabled = False
        self._error: Optional[str] = None

        if not public_key or not secret_key:
            self._error = "Langfuse credentials not configured"
            logger.debug("Tracing disabled: %s", self._error)
            return

        if host and not host.startswith(("http://", "https://")):
            logger.warning(
                "Langfuse host '%s' has no scheme; expected http://host:port", host
            )

        kwargs: dict[str, Any] = {
            "public_key": public_key,
            "secret_key": secret_key,
            "debug": debug,
        }
        if host:
            kwargs["host"] = host
        if flush_at is not None:
            kwargs["flush_at"] = flush_at
        if flush_interval is not None:
            kwargs["flush_interval"] = flush_interval

        try:
            self._client = Langfuse(**kwargs)
        except Exception as e:
            self._error = f"Failed to initialize Langfuse client: {e}"
            logger.warning("Tracing disabled: %s", self._error)
            return

        if self._check_connectivity():
            self._enabled = True
            logger.info("Langfuse tracing enabled (host: %s)", host or "default")

    def _check_connectivity(self) -> bool:
        """Verify credentials and endpoint once at startup."""
        try:
            ok = self._client.auth_check() if self._client else False
        except Exception as e:
            ok = False
            self._error = f"Langfuse connectivity check failed: {e}"
        else:
            if not ok:
                self._error = "Langfuse auth_check() failed"
        if not ok:
            logger.warning("Tracing disabled: %s", self._error)
            self._client = None
        return ok

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def error(self) -> Optional[str]:
        """Why tracing is disabled, if it is."""
        return self._error

    @property
    def client(self) -> Optional[Langfuse]:
        return self._client

    def flush(self) -> None:
        if not self._enabled or not self._client:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning("Failed to flush tracing events: %s", e)

    def shutdown(self) -> None:
        if not self._enabled or not self._client:
            return
        try:
            self._client.shutdown()
            logger.info("Langfuse tracing client shutdown complete")
        except Exception as e:
            logger.warning("Error during tracing client shutdown: %s", e)


_tracing_client: Optional[TracingClient] = None


def init_tracing_client(
    public_key: str = "",
    secret_key: str = "",
    host: str = "",
    debug: bool = False,
    flush_at: Optional[int] = None,
    flush_interval: Optional[float] = None,
) -> TracingClient:
    """Initialize the global tracing client singleton."""
    global _tracing_client
    _tracing_client = TracingClient(
        public_key=public_key,
        secret_key=secret_key,
        host=host,
        debug=debug,
        flush_at=flush_at,
        flush_interval=flush_interval,
    )
    return _tracing_client


def get_tracing_client() -> Optional[TracingClient]:
    return _tracing_client


def shutdown_tracing() -> None:
    """Shutdown the global tracing client."""
    global _tracing_client
    if _tracing_client:
        _tracing_client.shutdown()
        _tracing_client = None
