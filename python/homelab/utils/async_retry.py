"""
homelab/utils/async_retry.py

Retry decorator for coroutines that talk to slow or flaky infrastructure,
such as read-only SSH probes against a host that is still settling.

Mutating steps are not wrapped: a second 'terraform apply' or 'qm clone' is
never issued behind the operator's back. Only read-only probes opt in.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Coroutine, Tuple, Type
from typing_extensions import ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def async_retry(
    retries: int = 1,
    delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]
]:
    """Re-await a coroutine function until it returns or attempts run out.

    Args:
        retries: Total number of attempts. Anything below 1 means one attempt.
        delay: Seconds to sleep between attempts.
        retry_on: Exception types that trigger another attempt. Anything else
            propagates on the first failure.

    The exception from the final attempt is re-raised unchanged.
    """
    budget = max(retries, 1)

    def decorator(
        func: Callable[P, Coroutine[Any, Any, R]]
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            for attempt_no in range(1, budget):
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    logger.debug(
                        "%s: attempt %d of %d failed (%s), retrying in %.1fs",
                        func.__qualname__,
                        attempt_no,
                        budget,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
            return await func(*args, **kwargs)

        return wrapper

    return decorator
