#!/usr/bin/env python3
"""Retry Policy for Regulatory Ledger Calls.

This module provides the bounded retry used by the ledger client:
    - Exponential backoff: initial_delay * multiplier^(attempt-1), capped
    - Retry-After honoured for rate limits (still capped)
    - Only TransientError subclasses are retried; everything else surfaces

Every retry loop has a maximum attempt count, so no call can hang beyond
max_attempts * (timeout + max_delay).

Example:
    policy = RetryPolicy(max_attempts=3, initial_delay=1.0)
    result = await retry_async(client._request, "GET", "/strains/v2/active", policy=policy)

Author: Ledger Sync Team
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import RateLimitError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry Policy
# ============================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff configuration.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay: Delay in seconds before the first retry
        multiplier: Factor applied to the delay after each attempt
        max_delay: Upper bound for any single delay
        jitter: Randomize delays by +/-50% to avoid synchronized retries
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after a failed ``attempt`` (1-based)."""
        if retry_after:
            delay = float(retry_after)
        else:
            delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return min(delay, self.max_delay)


NO_RETRY = RetryPolicy(max_attempts=1, initial_delay=0.0)


# ============================================
# Retry Helper
# ============================================

async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    policy: RetryPolicy = RetryPolicy(),
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    **kwargs,
) -> T:
    """Call ``func`` and retry it on TransientError.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        policy: Attempt limit and backoff
        on_retry: Optional callback called before each retry with
            (exception, attempt, delay)
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func

    Raises:
        TransientError: The last transient failure, with ``attempts`` set,
            once the policy is exhausted
        LedgerError: Any non-transient failure, immediately
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except TransientError as e:
            if attempt >= policy.max_attempts:
                e.attempts = attempt
                e.details["attempts"] = attempt
                logger.error(
                    f"All {policy.max_attempts} attempts failed. Last error: {e}"
                )
                raise

            retry_after = e.retry_after if isinstance(e, RateLimitError) else None
            delay = policy.delay_for(attempt, retry_after)

            if on_retry:
                on_retry(e, attempt, delay)

            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")


__all__ = [
    "RetryPolicy",
    "NO_RETRY",
    "retry_async",
]
