"""Sliding-window rate limiter over the shared counter store."""

import math
import time
from dataclasses import dataclass

from billing.ratelimit.port import CounterStore

LOGIN_LIMIT = 5
LOGIN_WINDOW_SECONDS = 900


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset_in_seconds: int


class RateLimiter:
    """Admits at most ``limit`` calls per key in any trailing window.

    The window slides with the clock: a slot frees up exactly
    ``window_seconds`` after the call that took it, not at a bucket edge.
    Denied calls are not recorded.
    """

    def __init__(self, store: CounterStore, clock=time.time) -> None:
        self.store = store
        self.clock = clock

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self.clock()
        window = self.store.hit_sliding_window(f"ratelimit:{key}", now, window_seconds, limit)

        oldest = window.oldest if window.oldest is not None else now
        reset_in = max(1, math.ceil(oldest + window_seconds - now))

        if not window.admitted:
            return RateLimitResult(success=False, remaining=0, reset_in_seconds=reset_in)
        return RateLimitResult(
            success=True,
            remaining=limit - window.count - 1,
            reset_in_seconds=reset_in,
        )


def rate_limit_login(limiter: RateLimiter, ip: str) -> RateLimitResult:
    """Five login attempts per client IP per fifteen minutes."""
    return limiter.hit(f"login:{ip}", LOGIN_LIMIT, LOGIN_WINDOW_SECONDS)
