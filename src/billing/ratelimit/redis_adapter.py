"""Redis-backed counter store.

The sliding window lives in a sorted set scored by timestamp. The
purge-count-record sequence runs as one Lua script so concurrent callers
for the same key can never both see the last free slot.
"""

import math
from uuid import uuid4

import redis

from billing.ratelimit.port import CounterStore, WindowHit

SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]
local ttl = tonumber(ARGV[5])

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now - window))
local count = redis.call('ZCARD', key)
local admitted = 0
if count < limit then
    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    admitted = 1
end
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return {admitted, count, oldest[2]}
"""

# Delete a claim only while it still carries the caller's token
RELEASE_CLAIM_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisCounterStore(CounterStore):
    """Counter store on a shared Redis instance."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client
        self._sliding_window = client.register_script(SLIDING_WINDOW_SCRIPT)
        self._release_claim = client.register_script(RELEASE_CLAIM_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url))

    def hit_sliding_window(self, key: str, now: float, window_seconds: int, limit: int) -> WindowHit:
        admitted, count, oldest = self._sliding_window(
            keys=[key],
            args=[repr(now), window_seconds, limit, f"{now!r}-{uuid4().hex}", math.ceil(window_seconds)],
        )
        return WindowHit(
            admitted=bool(admitted),
            count=int(count),
            oldest=float(oldest) if oldest is not None else None,
        )

    def claim(self, key: str, ttl_seconds: int) -> str | None:
        token = uuid4().hex
        if self.client.set(key, token, nx=True, ex=ttl_seconds):
            return token
        return None

    def release(self, key: str, token: str) -> None:
        self._release_claim(keys=[key], args=[token])

    def close(self) -> None:
        self.client.close()
