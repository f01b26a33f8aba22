"""Per-source token-bucket rate limiting for the ingest path."""

from __future__ import annotations

import time
from collections.abc import Callable


class TokenBucket:
    """A token bucket that refuses instead of waiting.

    - rate = tokens added per second
    - capacity = burst size
    - try_acquire():
        - add (now - last_checked_time) * rate
        - clamp to capacity
        - if tokens >= 1: consume token and return True
        - else: return False
    """

    def __init__(self, rate: float, capacity: float, clock: Callable[[], float] = time.monotonic) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be > 0. Got: {rate}")
        self.rate = float(rate)
        self.capacity = float(capacity)
        self.token_count = float(capacity)
        self._clock = clock
        self.last_checked_time = clock()

    def try_acquire(self) -> bool:
        now = self._clock()
        elapsed = now - self.last_checked_time
        self.last_checked_time = now
        self.token_count = min(self.capacity, self.token_count + elapsed * self.rate)
        if self.token_count >= 1.0:
            self.token_count -= 1.0
            return True
        return False


class SourceRateLimiter:
    """One token bucket per ``source_app``.

    A ``rate`` of ``0`` disables limiting entirely.  At most *max_sources* buckets
    are tracked: refilled buckets go first, then the least recently used.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        *,
        max_sources: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate = rate
        self.burst = burst
        self._max_sources = max_sources
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def allow(self, source_app: str) -> bool:
        if not self.enabled:
            return True
        bucket = self._buckets.get(source_app)
        if bucket is None:
            if len(self._buckets) >= self._max_sources:
                self._evict()
            bucket = TokenBucket(self.rate, self.burst, clock=self._clock)
            self._buckets[source_app] = bucket
        return bucket.try_acquire()

    def _evict(self) -> None:
        # A bucket that has refilled completely carries no state worth keeping.
        now = self._clock()
        for key, bucket in list(self._buckets.items()):
            if bucket.token_count + (now - bucket.last_checked_time) * bucket.rate >= bucket.capacity:
                del self._buckets[key]
        # Still at the cap: drop the least recently used.
        excess = len(self._buckets) - self._max_sources + 1
        if excess > 0:
            stale = sorted(self._buckets, key=lambda k: self._buckets[k].last_checked_time)[:excess]
            for key in stale:
                del self._buckets[key]
