"""Counter store factory and rate limiting.

``COUNTER_STORE_URL`` selects the store:
- ``memory://``: InMemoryCounterStore (single process, tests)
- ``redis://...``: RedisCounterStore (shared across workers)
"""

from billing.ratelimit.fake_adapter import InMemoryCounterStore
from billing.ratelimit.limiter import RateLimiter, RateLimitResult, rate_limit_login
from billing.ratelimit.port import CounterStore

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitResult",
    "RateLimiter",
    "build_counter_store",
    "rate_limit_login",
]


def build_counter_store(url: str) -> CounterStore:
    """Construct the counter store for a connection URL."""
    if url.startswith("memory://"):
        return InMemoryCounterStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        from billing.ratelimit.redis_adapter import RedisCounterStore

        return RedisCounterStore.from_url(url)
    raise ValueError(f"Unsupported counter store URL: {url}")
