"""Retry with exponential backoff for transient scan failures."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from dqscan.scheduler.errors import classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay: Delay in seconds before the second attempt
        max_delay: Upper bound for any single delay
        backoff_multiplier: Growth factor between consecutive delays
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        """Build a policy from a ``RetryConfig`` section."""
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            backoff_multiplier=config.backoff_multiplier,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    context: Optional[str] = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or retrying stops making sense.

    Non-retryable errors are re-raised immediately. Retryable errors are
    retried after an exponentially growing delay until the policy's
    attempts are used up, then the last error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine function to invoke
        policy: Retry policy (default: :data:`DEFAULT_RETRY_POLICY`)
        context: Label used in log messages
        sleep: Awaitable sleep used between attempts

    Returns:
        Whatever ``operation`` returns on its successful attempt
    """
    policy = policy or DEFAULT_RETRY_POLICY
    label = context or "operation"

    attempt = 1
    while True:
        try:
            result = await operation()
            if attempt > 1:
                logger.info(f"{label} succeeded on attempt {attempt}")
            return result
        except Exception as e:
            classified = classify(e)

            if not classified.retryable:
                logger.warning(
                    f"{label} failed with non-retryable error {classified.code.value}: {classified.message}"
                )
                raise

            if attempt >= policy.max_attempts:
                logger.error(
                    f"{label} failed after {attempt} attempts: {classified.message}"
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed on attempt {attempt}/{policy.max_attempts} "
                f"({classified.code.value}), retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1


async def retry_query(
    operation: Callable[[], Awaitable[T]],
    query_name: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Retry wrapper for query-like operations."""
    context = f"Query: {query_name}" if query_name else "Query"
    return await retry_with_backoff(operation, policy, context)


async def retry_connection(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Retry wrapper for establishing connections."""
    return await retry_with_backoff(operation, policy, "Connection")
