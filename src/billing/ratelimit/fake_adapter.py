"""In-process counter store for development and testing.

A single lock serializes every operation, which gives the same
per-key atomicity the Redis script provides across processes.
"""

import threading
import time
from bisect import bisect_left, insort
from uuid import uuid4

from billing.ratelimit.port import CounterStore, WindowHit


class InMemoryCounterStore(CounterStore):
    """Thread-safe in-memory counter store."""

    def __init__(self, clock=time.time) -> None:
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, list[float]] = {}
        self._window_expiry: dict[str, float] = {}
        self._claims: dict[str, tuple[float, str]] = {}

    def hit_sliding_window(self, key: str, now: float, window_seconds: int, limit: int) -> WindowHit:
        with self._lock:
            if self._window_expiry.get(key, now) < now:
                self._windows.pop(key, None)

            entries = self._windows.setdefault(key, [])
            del entries[: bisect_left(entries, now - window_seconds)]

            count = len(entries)
            if count >= limit:
                return WindowHit(admitted=False, count=count, oldest=entries[0])

            insort(entries, now)
            self._window_expiry[key] = now + window_seconds
            return WindowHit(admitted=True, count=count, oldest=entries[0])

    def claim(self, key: str, ttl_seconds: int) -> str | None:
        now = self.clock()
        with self._lock:
            held = self._claims.get(key)
            if held is not None and held[0] > now:
                return None
            token = uuid4().hex
            self._claims[key] = (now + ttl_seconds, token)
            return token

    def release(self, key: str, token: str) -> None:
        with self._lock:
            held = self._claims.get(key)
            if held is not None and held[1] == token:
                del self._claims[key]

    def window(self, key: str) -> list[float]:
        """Snapshot of a window's recorded timestamps (for inspection)."""
        with self._lock:
            return list(self._windows.get(key, []))
