"""
Bounded polling.

Used where an upstream provider is known to fail transiently (for example
an address balance lookup right after a new transaction lands): the
caller's task is parked on a fixed interval until the operation succeeds,
the attempt budget runs out, or the caller cancels.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from nami_core.errors import RetryExhausted

logger = logging.getLogger("nami.retry")


@dataclass
class PollPolicy:
    """Fixed-interval retry budget."""
    interval: float = 0.1
    max_attempts: int = 50

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval < 0:
            raise ValueError("interval must be >= 0")


async def poll_until(
    func: Callable[[], Awaitable[Any]],
    policy: PollPolicy,
    cancel: Optional[asyncio.Event] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Any:
    """
    Await ``func()`` until it returns a truthy value.

    An exception in *retry_on* or a falsy result counts as a failed
    attempt. Setting *cancel* stops the poll with ``asyncio.CancelledError``;
    cancelling the awaiting task does the same through the normal asyncio
    path. Raises :class:`RetryExhausted` when the budget is spent.
    """
    last_error: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise asyncio.CancelledError("poll cancelled")
        try:
            result = await func()
        except retry_on as e:  # type: ignore[misc]
            last_error = e  # type: ignore[assignment]
            logger.warning(f"Attempt {attempt}/{policy.max_attempts} failed: {e}")
        else:
            if result:
                if attempt > 1:
                    logger.info(f"Succeeded on attempt {attempt}")
                return result
        if attempt == policy.max_attempts:
            break
        if cancel is None:
            await asyncio.sleep(policy.interval)
            continue
        try:
            await asyncio.wait_for(cancel.wait(), timeout=policy.interval)
        except asyncio.TimeoutError:
            continue
        raise asyncio.CancelledError("poll cancelled")
    raise RetryExhausted(policy.max_attempts, last_error)
