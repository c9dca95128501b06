import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class Backoff(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryResult(BaseModel):
    value: Any = None
    attempts: int
    exhausted: bool = False   # gave up while the last result still asked for a retry


def backoff_delay(attempt: int, delay: float, backoff: Backoff) -> float:
    """Wait after the `attempt`-th (1-based) failed try."""
    if backoff == Backoff.EXPONENTIAL:
        return delay * (2 ** (attempt - 1))
    return delay * attempt


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 1.0,
    backoff: Backoff = Backoff.LINEAR,
    retry_if: Optional[Callable[[T], bool]] = None,
    retry_on: tuple[type[Exception], ...] = (),
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> RetryResult:
    """Run `operation` up to `attempts` times.

    A result for which `retry_if` is true, or an exception listed in
    `retry_on`, costs one attempt and waits before the next. Any other
    exception propagates at once; after the last attempt a retried exception
    is re-raised. Task cancellation interrupts the wait.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            value = await operation()
        except retry_on as exc:
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            logger.info("%s attempt %d/%d failed: %s", label, attempt, attempts, exc)
        else:
            if retry_if is None or not retry_if(value):
                return RetryResult(value=value, attempts=attempt)
            if attempt == attempts:
                logger.info("%s gave up after %d attempts", label, attempt)
                return RetryResult(value=value, attempts=attempt, exhausted=True)
            logger.info("%s attempt %d/%d returned nothing, retrying", label, attempt, attempts)

        wait = backoff_delay(attempt, delay, backoff)
        logger.info("%s retrying in %.1fs", label, wait)
        await sleep(wait)

    raise AssertionError("unreachable")
