"""Bounded exponential-backoff retry for async producer calls."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from augment_engine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with up to ``max_attempts`` tries.

    After failed attempt ``n`` (0-based) the executor sleeps
    ``base_delay * 2**n`` seconds before trying again. Errors that are not
    instances of ``retry_on`` propagate immediately. After the final attempt
    the original error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Total attempts, including the first
        base_delay: Delay in seconds before the first retry
        retry_on: Exception types worth retrying
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The operation's result
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt == max_attempts - 1:
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} failed "
                f"({type(e).__name__}: {e}), retrying in {delay}s"
            )
            await sleep(delay)

    raise AssertionError("unreachable")
