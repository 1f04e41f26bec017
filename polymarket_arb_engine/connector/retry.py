"""
Retry with exponential backoff for idempotent reads.

Only book, balance and metadata reads go through here. Orders and on-chain
transactions are never retried: a second attempt may double-spend.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING

from ..errors import TransientFetchError

if TYPE_CHECKING:
    from ..monitor import Logger

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 3,
    initial_delay: float = 0.5,
    backoff_factor: float = 2.0,
    max_delay: float = 10.0,
    timeout: Optional[float] = None,
    jitter: bool = True,
    resource: str = "",
    logger: Optional["Logger"] = None,
    **kwargs: Any,
) -> T:
    """
    Await func(*args, **kwargs), retrying on any exception.

    Each attempt is bounded by `timeout`; a timeout counts as a failure.
    After the last attempt the failure is raised as TransientFetchError.
    """
    delay = initial_delay
    last_exception: Optional[BaseException] = None

    for attempt in range(max_retries):
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exception = e

            if attempt < max_retries - 1:
                # Jitter so parallel scans don't retry in lockstep
                actual_delay = delay * (0.5 + random.random() * 0.5) if jitter else delay
                actual_delay = min(actual_delay, max_delay)

                if logger:
                    logger.debug(
                        "read_retry",
                        resource=resource,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=round(actual_delay, 3),
                        error=repr(e),
                    )

                await asyncio.sleep(actual_delay)
                delay *= backoff_factor

    raise TransientFetchError(
        f"{resource or 'read'} failed after {max_retries} attempts: {last_exception!r}",
        resource=resource,
    ) from last_exception
