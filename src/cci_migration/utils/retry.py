"""Retry logic and decorators using tenacity.

Two retry families live here:

* API retries: exponential backoff with jitter for transient remote
  failures, plus Retry-After aware handling of 429 responses.
* Ledger retries: a short, linearly increasing backoff used around
  write transactions that may hit a locked SQLite database.
"""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
    wait_random_exponential,
)

from cci_migration.client.exceptions import (
    LedgerLockedError,
    NetworkError,
    RateLimitError,
    ServerError,
)
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


def retry_with_backoff(
    max_attempts: int = 5,
    min_wait: int = 2,
    max_wait: int = 60,
    retry_on_exceptions: tuple = (NetworkError, ServerError),
) -> Callable[[F], F]:
    """Retry decorator for coroutine functions, with exponential backoff and jitter.

    Rate limits are deliberately not part of the default exception set: they
    are handled by retry_with_rate_limit_handling, which honours Retry-After.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        retry_on_exceptions: Tuple of exception types to retry on

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt_obj in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(retry_on_exceptions),
                reraise=True,
            ):
                with attempt_obj:
                    attempt = attempt_obj.retry_state.attempt_number
                    if attempt > 1:
                        logger.info(
                            "retry_attempt",
                            function=func.__name__,
                            attempt=attempt,
                            max_attempts=max_attempts,
                        )
                    return await func(*args, **kwargs)

        return async_wrapper  # type: ignore

    return decorator


async def retry_with_rate_limit_handling(
    coro: Callable[[], Awaitable[T]],
    max_attempts: int = 6,
    default_wait: float = 60,
    max_wait: float = 300,
) -> T:
    """Retry a coroutine factory while the server answers 429.

    The wait honours the Retry-After header and falls back to default_wait
    when the header is absent.

    Args:
        coro: Zero-argument callable returning a fresh awaitable per attempt
        max_attempts: Maximum number of attempts (first call included)
        default_wait: Seconds to wait when Retry-After is missing
        max_wait: Upper bound for a single wait

    Returns:
        Result of the coroutine

    Raises:
        RateLimitError: If all attempts are exhausted
    """
    attempt = 0

    while True:
        attempt += 1
        try:
            return await coro()
        except RateLimitError as e:
            if attempt >= max_attempts:
                logger.error(
                    "rate_limit_retry_exhausted",
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
                raise

            wait_time = min(e.retry_after if e.retry_after else default_wait, max_wait)

            logger.warning(
                "rate_limit_retrying",
                attempt=attempt,
                max_attempts=max_attempts,
                wait_seconds=wait_time,
            )

            await asyncio.sleep(wait_time)


def _log_lock_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ledger_locked_retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def retry_on_lock(max_attempts: int = 3, backoff: float = 0.5) -> Retrying:
    """Build a Retrying controller for ledger write transactions.

    The n-th retry waits ``n * backoff`` seconds. Only LedgerLockedError is
    retried; any other exception ends the loop on the first attempt.

    Args:
        max_attempts: Maximum number of attempts
        backoff: Base backoff in seconds

    Returns:
        tenacity.Retrying instance to iterate over
    """
    return Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=backoff, increment=backoff),
        retry=retry_if_exception_type(LedgerLockedError),
        before_sleep=_log_lock_retry,
        reraise=True,
    )
