"""
Retry with exponential backoff and jitter.

delay(attempt) = min(max_delay, base_delay * 2**attempt), then scaled by a
factor drawn from [0.5, 1.0] when jitter is on.
"""

import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import (
    RETRYABLE_ERROR_TYPES,
    classify_exception,
    is_service_exception,
)

T = TypeVar("T")

JITTER_LOW = 0.5
JITTER_HIGH = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Delays are in seconds."""

    retries: int = 2
    base_delay: float = 0.3
    max_delay: float = 2.0
    jitter: bool = True

    def target_delay(self, attempt: int) -> float:
        """Backoff before jitter."""
        return min(self.max_delay, self.base_delay * (2**attempt))


def is_retryable(error: BaseException, attempt: int = 0) -> bool:
    """Transient transport failures are retried; validation/auth/defects are not."""
    if not is_service_exception(error):
        return False
    return classify_exception(error) in RETRYABLE_ERROR_TYPES


async def retry_with_backoff(
    task: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException, int], bool] = is_retryable,
    policy: RetryPolicy | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
    label: str = "task",
) -> T:
    """
    Run task, retrying failures that should_retry accepts.

    Args:
        task: Zero-argument coroutine factory
        should_retry: Called with (error, attempt); False re-raises at once
        policy: Retry limits and delays
        clock: Time source used for sleeping
        rng: Random source for jitter
        label: Name used in log lines

    Returns:
        The task's result

    Raises:
        The last error once retries are exhausted or not retryable
    """
    policy = policy or RetryPolicy()
    clock = clock or SystemClock()
    rng = rng or random.Random()

    attempt = 0
    while True:
        try:
            return await task()
        except Exception as e:
            if not should_retry(e, attempt) or attempt >= policy.retries:
                raise

            delay = policy.target_delay(attempt)
            if policy.jitter:
                delay *= rng.uniform(JITTER_LOW, JITTER_HIGH)

            logger.warning(
                f"{label}: attempt {attempt + 1}/{policy.retries + 1} failed, "
                f"retrying in {delay:.2f}s: {e}"
            )
            await clock.sleep(delay)
            attempt += 1
