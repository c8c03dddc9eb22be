"""
Timeouts and jittered exponential backoff for external calls.
"""
import asyncio
import logging
import random
from typing import Awaitable, TypeVar

from .errors import UpstreamError

logger = logging.getLogger("news_trader.resilience")

T = TypeVar("T")

MAX_DOUBLINGS = 32


def jittered_backoff(
    failures: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_factor: float = 0.5,
) -> float:
    """
    Delay before the next cycle after consecutive errors.

    Doubles per failure up to max_delay, then removes a random share of
    up to jitter_factor.
    The result never exceeds max_delay.

    Args:
        failures: Consecutive failures before this one (0 for the first)
        base_delay: Delay after the first failure
        max_delay: Ceiling for any delay
        jitter_factor: Largest fraction removed at random (0-1)

    Returns:
        Delay in seconds
    """
    if base_delay <= 0 or max_delay <= 0:
        return 0.0

    ceiling = min(base_delay * (2 ** min(failures, MAX_DOUBLINGS)), max_delay)
    return ceiling * (1 - random.uniform(0, jitter_factor))


async def with_timeout(awaitable: Awaitable[T], timeout: float, service: str) -> T:
    """
    Await an external call with a bounded timeout.

    Raises:
        UpstreamError: the call did not finish within `timeout` seconds
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{service} call timed out after {timeout:.1f}s")
        raise UpstreamError(service, f"timed out after {timeout:.1f}s")
