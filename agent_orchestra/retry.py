"""
Retry/Backoff Governor.

Wraps model calls and tool invocations with a classification-aware retry
policy built on tenacity. Permanent failures surface immediately; retryable
failures are attempted up to ``policy.max_attempts`` times with exponential
backoff and jitter, after which a ``RetriesExhaustedError`` wraps the last
underlying error.
"""

import logging
import random
import time
from typing import Callable, Optional, Protocol, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt

from .errors import RetriesExhaustedError, classify_error
from .models.policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JitterSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


class RetryGovernor:
    """Single place where retry and backoff decisions are made."""

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[JitterSource] = None,
    ):
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff(self, policy: RetryPolicy, attempt: int) -> float:
        """Jittered delay after failed attempt ``attempt`` (1-indexed)."""
        return policy.backoff_delay(attempt, jitter=self._rng.uniform(0.5, 1.0))

    def execute(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy,
        description: str = "operation",
    ) -> T:
        """
        Run ``operation`` under ``policy``.

        Args:
            operation: Zero-argument callable performing one attempt.
            policy: Attempt budget, backoff and retryable error kinds.
            description: Label used in log lines.

        Returns:
            The operation's return value from the first successful attempt.

        Raises:
            RetriesExhaustedError: Every attempt failed with a retryable kind.
            Exception: The original error when its kind is not retryable.
        """

        def should_retry(error: BaseException) -> bool:
            return policy.is_retryable(classify_error(error))

        def wait(retry_state: RetryCallState) -> float:
            return self.backoff(policy, retry_state.attempt_number)

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "%s failed (attempt %d/%d, %s): %s; retrying in %.2fs",
                description,
                retry_state.attempt_number,
                policy.max_attempts,
                classify_error(error).value if error else "unknown",
                error,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
            )

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(should_retry),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=False,
        )
        try:
            return retrying(operation)
        except RetryError as e:
            last_attempt = e.last_attempt
            last_error = last_attempt.exception()
            logger.error(
                "%s exhausted %d attempt(s): %s",
                description,
                last_attempt.attempt_number,
                last_error,
            )
            raise RetriesExhaustedError(
                last_error, attempts=last_attempt.attempt_number
            ) from last_error
