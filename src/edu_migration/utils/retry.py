"""Retry logic using tenacity.

This module provides the retry policies used around every call to the
learning platform backend: a generic exponential backoff for transient
failures, and a long fixed-interval policy that waits out backend overload
(503 Service Unavailable).
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from edu_migration.client.exceptions import (
    NetworkError,
    RateLimitError,
    ServerError,
    ServiceUnavailableError,
)
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry an operation.

    The delay before retry ``n`` (1-based) is
    ``initial_delay * multiplier ** (n - 1)``; a multiplier of 1 gives a
    fixed interval.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay: Delay in seconds before the first retry
        multiplier: Backoff multiplier applied per attempt
        retry_on: Exception types that trigger a retry
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = (NetworkError, ServerError, RateLimitError)


def _log_before_sleep(context: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "retry_attempt",
            context=context,
            attempt=retry_state.attempt_number,
            wait_seconds=round(wait, 3),
            error=str(error) if error else None,
        )

    return before_sleep


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    context: str = "operation",
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures.

    On success at any attempt the result is returned immediately. When the
    attempts are exhausted the last error is re-raised with a note naming
    the context and the number of attempts.

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry policy (defaults to 3 attempts, 0.5s doubling)
        context: Label used in logs and in the exhaustion note
        sleep: Awaitable sleep used between attempts

    Returns:
        Result of the operation
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay, exp_base=policy.multiplier, min=0
        ),
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=_log_before_sleep(context),
        sleep=sleep,
        reraise=True,
    )

    attempt = 0
    try:
        async for attempt_obj in retrying:
            with attempt_obj:
                attempt = attempt_obj.retry_state.attempt_number
                return await operation()
    except policy.retry_on as e:
        if attempt >= policy.max_attempts:
            logger.warning(
                "retry_exhausted",
                context=context,
                attempts=attempt,
                error=str(e),
            )
            e.add_note(f"{context} failed after {attempt} attempts")
        raise

    # AsyncRetrying with reraise=True never falls through
    raise RuntimeError("Unexpected retry loop exit")


def service_unavailable_policy(max_attempts: int = 100, delay: float = 0.5) -> RetryPolicy:
    """Fixed-interval policy that waits out a 503 from an overloaded backend."""
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=delay,
        multiplier=1.0,
        retry_on=(ServiceUnavailableError,),
    )


def generic_policy(max_attempts: int = 3, initial_delay: float = 0.5) -> RetryPolicy:
    """Exponential policy for network blips and 5xx responses."""
    return RetryPolicy(max_attempts=max_attempts, initial_delay=initial_delay, multiplier=2.0)
