"""Retry wrapper for engine invocations.

Transient failures (rate limits, overload, connection resets) are retried
with exponential backoff; anything else, including the runtime's own
execution timeout, returns immediately. The backoff wait is cancellable
through the run context.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional

from hal.context import RunContext
from hal.engine.types import Result
from hal.errors import ErrorClassifier, ExecutionCancelledError

logger = logging.getLogger(__name__)


# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 5.0
DEFAULT_MAX_DELAY_SECONDS = 120.0


@dataclass
class RetryPolicy:
    """How many times to retry and how long to wait in between."""
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS
    jitter_percent: int = 0  # 0-100, spread added on top of the backoff

    @property
    def max_attempts(self) -> int:
        return max(self.max_retries, 0) + 1


# Called before each backoff wait with (attempt, max_attempts, delay, error)
RetryCallback = Callable[[int, int, float, Optional[Exception]], None]


def calculate_delay(policy: RetryPolicy, attempt: int) -> float:
    """Calculate the backoff before a retry.

    Args:
        policy: Retry policy.
        attempt: Retry number, 0-indexed (0 is the first retry).

    Returns:
        Delay in seconds, capped at policy.max_delay_seconds.
    """
    delay = policy.base_delay_seconds * (2 ** max(attempt, 0))
    if policy.jitter_percent > 0:
        delay += delay * random.uniform(0, policy.jitter_percent / 100)
    return min(delay, policy.max_delay_seconds)


def execute_with_retry(
    operation: Callable[[], Result],
    ctx: Optional[RunContext] = None,
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[RetryCallback] = None,
) -> Result:
    """Run operation, retrying transient failures.

    A result that is successful or claims completion is returned as is. A
    result whose error is not transient is returned immediately. A failed
    result without any error is retried.

    Args:
        operation: Performs one engine invocation.
        ctx: Run context; cancelling it interrupts the backoff wait.
        policy: Retry policy (defaults apply when None).
        on_retry: Notified before each backoff wait.

    Returns:
        The last Result. If the run is cancelled while waiting, a failed
        Result carrying ExecutionCancelledError and the last output.
    """
    policy = policy or RetryPolicy()
    ctx = ctx or RunContext.background()

    result = operation()
    for attempt in range(policy.max_retries):
        if result.success or result.complete:
            return result

        if result.error is not None and not ErrorClassifier.is_retryable(result.error):
            logger.debug("not retrying: %s", result.error)
            return result

        delay = calculate_delay(policy, attempt)
        logger.warning(
            "Attempt %d/%d failed, retrying in %.1fs: %s",
            attempt + 1,
            policy.max_attempts,
            delay,
            result.error,
        )
        if on_retry is not None:
            on_retry(attempt + 2, policy.max_attempts, delay, result.error)

        if ctx.wait(delay):
            return Result(
                success=False,
                output=result.output,
                duration=result.duration,
                tokens=result.tokens,
                error=ExecutionCancelledError("retry cancelled"),
            )

        result = operation()

    return result
