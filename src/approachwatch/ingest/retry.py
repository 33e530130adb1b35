"""Bounded retry with exponential backoff and jitter for upstream calls.

The delay before retry *n* is ``min(initial * 2**(n-1), max_delay)`` plus a
uniform jitter in ``[0, jitter_s)``, so several deployed instances polling
the same upstream do not resynchronize after an outage.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import aiohttp

from approachwatch.config import RetryPolicy
from approachwatch.core.errors import AuthError, FetchError
from approachwatch.core.time import TimeSource

__all__ = ["is_retryable", "backoff_delays", "retry_async"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Server errors, rate limits and transient network failures."""
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status >= 500 or exc.status == 429
    return isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError))


def backoff_delays(policy: RetryPolicy, rng: random.Random) -> list[float]:
    """Waits between consecutive attempts (``attempts - 1`` values)."""
    out: list[float] = []
    delay = policy.initial_delay_s
    for _ in range(policy.attempts - 1):
        out.append(delay + rng.uniform(0.0, policy.jitter_s))
        delay = min(delay * 2.0, policy.max_delay_s)
    return out


async def retry_async(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    ts: TimeSource,
    rng: random.Random | None = None,
    what: str = "request",
) -> T:
    """Await ``op()`` until it succeeds or the attempt budget is spent.

    Raises:
        FetchError: Non-retryable failure, or retries exhausted. The last
            underlying exception is chained as ``__cause__``.
        AuthError: Propagated untouched; credential handling is the
            caller's concern.
    """
    rng = rng or random.Random()
    delays = backoff_delays(policy, rng)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await op()
        except (asyncio.CancelledError, AuthError, FetchError):
            raise
        except Exception as e:  # noqa: BLE001
            if not is_retryable(e):
                raise FetchError(f"{what} failed: {e}") from e
            if attempt >= policy.attempts:
                raise FetchError(
                    f"{what} failed after {attempt} attempts: {e}"
                ) from e
            wait = delays[attempt - 1]
            logger.info(
                "%s attempt %d/%d failed (%s); retrying in %.2fs",
                what,
                attempt,
                policy.attempts,
                e.__class__.__name__,
                wait,
            )
            await ts.sleep(wait)
