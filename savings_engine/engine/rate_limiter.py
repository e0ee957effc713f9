"""
Token Bucket Rate Limiter

Admission control for outbound exchange-rate and on-chain balance calls.

DESIGN DECISION: Refill and debit happen in one critical section under an
asyncio.Lock, so the token count never goes negative and two callers can
never both refill for the same elapsed interval. Waiting happens outside
the lock; a waiting caller re-checks from scratch when it wakes up.

`acquire` never raises. It only ever delays the caller.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class TokenBucketRateLimiter:
    """
    Lazily refilled token bucket.

    Args:
        max_tokens: Bucket capacity (burst size). The bucket starts full.
        refill_per_second: Tokens added per second of elapsed time.
        clock: Monotonic clock in seconds. Injected in tests.
        sleep: Coroutine used to wait. Injected in tests.
    """

    def __init__(
        self,
        max_tokens: float,
        refill_per_second: float,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self._max_tokens = float(max_tokens)
        self._refill_per_second = float(refill_per_second)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._tokens = self._max_tokens
        self._last_refill_at = self._clock()

    @property
    def max_tokens(self) -> float:
        return self._max_tokens

    @property
    def available_tokens(self) -> float:
        """Tokens in the bucket as of the last refill."""
        return self._tokens

    async def acquire(self, cost: float = 1.0) -> None:
        """
        Wait until `cost` tokens are available, then debit them.

        A cost of zero or less is admitted immediately. A cost above the
        bucket capacity could never be satisfied, so it is clamped to the
        capacity.
        """
        if cost <= 0:
            return
        if cost > self._max_tokens:
            logger.warning(
                "rate_limit_cost_clamped",
                requested=cost,
                max_tokens=self._max_tokens,
            )
            cost = self._max_tokens

        while True:
            async with self._lock:
                self._refill_locked()
                if self._tokens >= cost:
                    self._tokens -= cost
                    return
                missing = cost - self._tokens
                wait_millis = max(1, int(missing / self._refill_per_second * 1000))

            await self._sleep(wait_millis / 1000)

    def _refill_locked(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill_at
        if elapsed <= 0:
            return
        self._tokens = min(self._max_tokens, self._tokens + elapsed * self._refill_per_second)
        self._last_refill_at = now
