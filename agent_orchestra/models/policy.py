"""
Retry policy value object.

Configured per call-site: the model call and tool calls usually carry
different policies.
"""

from dataclasses import dataclass, field

from ..errors import ErrorKind


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and how long to wait between attempts."""

    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_cap: float = 8.0
    retryable_error_kinds: frozenset[ErrorKind] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base <= 0:
            raise ValueError("backoff_base must be positive")
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must be >= backoff_base")
        # Accept any iterable of kinds or kind names.
        object.__setattr__(
            self,
            "retryable_error_kinds",
            frozenset(ErrorKind(k) for k in self.retryable_error_kinds),
        )

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind in self.retryable_error_kinds

    def backoff_delay(self, attempt: int, jitter: float = 1.0) -> float:
        """
        Delay to wait after failed attempt ``attempt`` (1-indexed).

        ``min(backoff_cap, backoff_base * 2^(attempt-1)) * jitter`` where the
        caller draws ``jitter`` from [0.5, 1.0].
        """
        return min(self.backoff_cap, self.backoff_base * 2 ** (attempt - 1)) * jitter

    @classmethod
    def for_model_calls(cls) -> "RetryPolicy":
        return cls(
            max_attempts=3,
            backoff_base=1.0,
            backoff_cap=30.0,
            retryable_error_kinds=frozenset({ErrorKind.MODEL_UNAVAILABLE}),
        )

    @classmethod
    def for_tool_calls(cls) -> "RetryPolicy":
        return cls(
            max_attempts=3,
            backoff_base=0.5,
            backoff_cap=8.0,
            retryable_error_kinds=frozenset(
                {
                    ErrorKind.TOOL_TRANSIENT,
                    ErrorKind.TOOL_TIMEOUT,
                    ErrorKind.TOOL_BACKPRESSURE,
                }
            ),
        )

    @classmethod
    def for_store_writes(cls) -> "RetryPolicy":
        # Version conflicts are never retried.
        return cls(
            max_attempts=3,
            backoff_base=0.1,
            backoff_cap=1.0,
            retryable_error_kinds=frozenset({ErrorKind.STORAGE_CONTENTION}),
        )
