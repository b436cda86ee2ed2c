"""In-memory token-bucket rate limiting for API keys.

Each key gets a bucket sized from its ``rate_limit_per_minute``: capacity
equals the per-minute limit and tokens refill at limit/60 per second. This is
single-process state; it is created by the app factory and injected, never a
module global.

Stdlib only.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time

logger = logging.getLogger(__name__)

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "KeyRateLimiter",
    "prune_periodically",
]


class _Bucket:
    """A single token bucket for one client."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Rate limit state returned by ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        """Return rate-limit response headers (RFC 6585 style)."""
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            h["Retry-After"] = str(math.ceil(self.reset_after))
        return h


class RateLimiter:
    """Token-bucket rate limiter keyed by client identifier.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size (bucket capacity).
    """

    def __init__(self, rate: float, capacity: int, clock=time.monotonic):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    def check(self, key: str) -> RateLimitInfo:
        """Check rate limit and return detailed info with header values."""
        now = self._clock()

        if key not in self._buckets:
            self._buckets[key] = _Bucket(self.capacity, now)

        bucket = self._buckets[key]

        # Refill tokens since last check
        elapsed = now - bucket.last_refill
        bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
        bucket.last_refill = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            remaining = int(bucket.tokens)
            reset_after = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0
            return RateLimitInfo(True, self.capacity, remaining, reset_after)

        # Denied: compute time until next token
        reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
        return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Remove stale entries older than *max_age* seconds. Returns count removed."""
        now = self._clock()
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
        for k in stale:
            del self._buckets[k]
        return len(stale)


class KeyRateLimiter:
    """Per-key limiter that honours each key's own per-minute limit."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._limiters: dict[int, RateLimiter] = {}

    def check(self, key_id: str, per_minute: int) -> RateLimitInfo:
        limiter = self._limiters.get(per_minute)
        if limiter is None:
            limiter = RateLimiter(rate=per_minute / 60.0, capacity=per_minute, clock=self._clock)
            self._limiters[per_minute] = limiter
        return limiter.check(f"apikey:{key_id}")

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Run cleanup on every per-limit bucket set. Returns total entries removed."""
        return sum(limiter.cleanup(max_age) for limiter in self._limiters.values())


async def prune_periodically(
    limiter: KeyRateLimiter, interval: float, max_age: float = 3600.0
) -> None:
    """Drop idle buckets every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = limiter.cleanup(max_age)
        if removed:
            logger.debug("Pruned %d idle rate-limit buckets", removed)
