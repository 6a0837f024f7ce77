"""Bounded retry with a per-attempt watchdog."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from clipora.errors import SelectionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """
    Call fn until it succeeds or max_attempts attempts have been made.

    Each attempt is raced against timeout (when given); an expired attempt
    raises SelectionTimeoutError and counts as an attempt. Errors outside
    retry_on propagate immediately.

    Returns:
        The first successful result

    Raises:
        The error from the final attempt
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            if timeout is None:
                result = await fn()
            else:
                try:
                    result = await asyncio.wait_for(fn(), timeout=timeout)
                except asyncio.TimeoutError:
                    raise SelectionTimeoutError(f"{label} timed out after {timeout:.0f}s")
            if attempt > 1:
                logger.info(f"{label} succeeded on attempt {attempt}")
            return result
        except retry_on as e:
            last_error = e
            logger.warning(f"{label} attempt {attempt}/{max_attempts} failed: {e}")

    raise last_error
