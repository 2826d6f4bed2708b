"""
Exponential backoff for transient failures.

Usage:
    trade = await call_with_backoff(
        controller.close_on_trigger, account_id, price,
        attempts=3, exceptions=(StorageError,),
    )
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exhausted."""
    pass


def backoff_delay(attempt: int, initial_delay: float, backoff_factor: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): initial * factor^(attempt-1), capped."""
    return min(initial_delay * (backoff_factor ** (attempt - 1)), max_delay)


async def call_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> Any:
    """
    Await ``func(*args, **kwargs)``, retrying on ``exceptions``.

    Exceptions outside ``exceptions`` propagate immediately.

    Raises:
        MaxRetriesExceeded: every attempt failed (chained to the last error)
    """
    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, attempts + 1):
        try:
            result = await func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"✅ {name} succeeded on attempt {attempt}/{attempts}")
            return result
        except exceptions as e:
            if attempt >= attempts:
                logger.error(f"❌ {name} failed after {attempts} attempts. Last error: {e}")
                raise MaxRetriesExceeded(f"{name} failed after {attempts} attempts") from e

            delay = backoff_delay(attempt, initial_delay, backoff_factor, max_delay)
            logger.warning(
                f"⚠️ {name} attempt {attempt}/{attempts} failed: {e}. Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

    raise MaxRetriesExceeded(f"{name} was not attempted (attempts={attempts})")
