"""
Retry mechanisms for transient failures and identifier collisions.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar
from functools import wraps
from dataclasses import dataclass

from sqlalchemy.exc import DBAPIError

from ..utils.exceptions import ConcurrencyError, IdentifierExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Driver messages that mean "another transaction got there first"
_CONFLICT_MARKERS = (
    "deadlock detected",
    "could not serialize access",
    "lock not available",
    "database is locked",
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_factor: float = 1.0


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Exponential backoff delay for a zero-based attempt number."""
    delay = min(
        config.base_delay * (config.exponential_base ** attempt) * config.backoff_factor,
        config.max_delay
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_async(
    func: Callable,
    config: RetryConfig,
    *args,
    retryable_exceptions: tuple = (Exception,),
    non_retryable_exceptions: tuple = (),
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        *args, **kwargs: Arguments to pass to the function
        retryable_exceptions: Exceptions that should trigger retries
        non_retryable_exceptions: Exceptions that should not trigger retries

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted
    """
    last_exception = None

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)

            if attempt > 0:
                logger.info(f"Function {func.__name__} succeeded on attempt {attempt + 1}")

            return result

        except non_retryable_exceptions as e:
            logger.error(f"Non-retryable error in {func.__name__}: {e}")
            raise

        except retryable_exceptions as e:
            last_exception = e

            if attempt == config.max_attempts - 1:
                break

            delay = compute_delay(config, attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )

            await asyncio.sleep(delay)

    logger.error(f"All {config.max_attempts} attempts failed for {func.__name__}")
    raise last_exception


def retry_on_concurrency_error(
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    jitter: bool = True
):
    """Decorator for retrying a whole unit of work after a concurrency conflict."""

    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        jitter=jitter
    )

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(
                func,
                config,
                *args,
                retryable_exceptions=(ConcurrencyError, asyncio.TimeoutError),
                non_retryable_exceptions=(ValueError, TypeError),
                **kwargs
            )
        return wrapper

    return decorator


def is_concurrency_conflict(exc: BaseException) -> bool:
    """Check whether a database error was caused by a competing transaction."""
    if not isinstance(exc, DBAPIError):
        return False
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


async def retry_on_conflict(
    attempt: Callable[[int], Awaitable[Optional[T]]],
    max_attempts: int,
    identifier_kind: str,
) -> T:
    """
    Bounded generate-and-claim loop.

    ``attempt`` is called with the 1-based attempt number and returns the
    claimed value, or ``None`` when the candidate collided with an existing
    one. After ``max_attempts`` collisions the loop gives up with
    ``IdentifierExhaustedError``.
    """
    for attempt_number in range(1, max_attempts + 1):
        claimed = await attempt(attempt_number)
        if claimed is not None:
            if attempt_number > 1:
                logger.info(f"Allocated {identifier_kind} after {attempt_number} attempts")
            return claimed
        logger.debug(f"{identifier_kind} collision on attempt {attempt_number}")

    logger.error(f"Exhausted {max_attempts} attempts allocating {identifier_kind}")
    raise IdentifierExhaustedError(identifier_kind, max_attempts)
