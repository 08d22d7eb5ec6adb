"""Bounded retry with exponential backoff."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()


@dataclass
class RetryResult:
    """Outcome of a retry loop."""

    success: bool
    attempts: int
    delays: list[float] = field(default_factory=list)
    last_error: Exception | None = None


async def retry_with_backoff(
    predicate: Callable[[], Awaitable[bool]],
    *,
    attempts: int,
    base_delay: float,
    factor: float = 2.0,
    operation: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult:
    """Call ``predicate`` until it returns True or the attempt budget is spent.

    The delay before attempt ``n + 1`` is ``base_delay * factor ** (n - 1)``.
    Exceptions raised by the predicate count as a failed attempt.

    Args:
        predicate: Async callable returning True on success
        attempts: Maximum number of calls, at least 1
        base_delay: Delay after the first failed attempt, in seconds
        factor: Delay growth factor
        operation: Name used in log events
        sleep: Sleep coroutine, replaceable in tests

    Returns:
        RetryResult with the number of attempts made and delays slept
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    result = RetryResult(success=False, attempts=0)
    delay = base_delay
    for attempt in range(1, attempts + 1):
        result.attempts = attempt
        try:
            if await predicate():
                result.success = True
                return result
            result.last_error = None
        except Exception as e:
            result.last_error = e

        logger.debug(
            "Retry attempt failed",
            operation=operation,
            attempt=attempt,
            max_attempts=attempts,
            error=str(result.last_error) if result.last_error else None,
        )
        if attempt < attempts:
            result.delays.append(delay)
            await sleep(delay)
            delay *= factor

    return result
