"""
Bursa Refresh — Rate Limiter
─────────────────────────────
Token-bucket rate limiter per quote provider.
Keeps a burst of batch calls inside each provider's per-minute quota.

Limits enforced:
  EODHD:  1000 req/min on paid plans → 10 req/s, burst 20
  Yahoo:  unofficial, soft limits    → 1 req per 0.5s, burst 5

Tokens go negative while callers are queued: each caller reserves its
slot under the lock and sleeps until that slot comes due, so N concurrent
callers past the burst are spread over N / rate seconds.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

log = logging.getLogger("br.rate_limiter")


class TokenBucket:
    """Refills at `rate` tokens/second up to `capacity`."""

    def __init__(self, capacity: float, rate: float,
                 clock: Callable[[], float] = time.monotonic):
        if capacity <= 0 or rate <= 0:
            raise ValueError("capacity and rate must be positive")
        self.capacity = capacity
        self.rate     = rate
        self._clock   = clock
        self._tokens  = float(capacity)
        self._last    = clock()
        self._lock    = asyncio.Lock()

    @property
    def queued(self) -> float:
        """Tokens already promised to sleeping callers."""
        return max(0.0, -self._tokens)

    async def reserve(self, tokens: float = 1.0) -> float:
        """Reserve `tokens`. Returns seconds until the reservation is usable."""
        async with self._lock:
            now = self._clock()
            self._tokens = min(self.capacity, self._tokens + (now - self._last) * self.rate)
            self._last = now
            self._tokens -= tokens
            return max(0.0, -self._tokens / self.rate)

    async def wait(self, tokens: float = 1.0):
        delay = await self.reserve(tokens)
        if delay > 0:
            log.debug(f"Rate limit: sleeping {delay:.2f}s ({self.queued:.0f} queued)")
            await asyncio.sleep(delay)


# ── Provider configurations ───────────────────────────────────
# (capacity, rate_per_second)
_PROVIDER_CONFIG: Dict[str, Tuple[float, float]] = {
    "eodhd": (20, 10.0),
    "yahoo": (5,  2.0),
}

_buckets: Dict[str, TokenBucket] = {}


def get_bucket(provider: str) -> TokenBucket:
    if provider not in _buckets:
        cap, rate = _PROVIDER_CONFIG.get(provider, (5, 1.0))
        _buckets[provider] = TokenBucket(cap, rate)
    return _buckets[provider]


async def acquire(provider: str, tokens: float = 1.0):
    """Wait for a rate limit slot for a provider."""
    await get_bucket(provider).wait(tokens)


def reset():
    """Drop all buckets; the next call starts with a full burst."""
    _buckets.clear()
