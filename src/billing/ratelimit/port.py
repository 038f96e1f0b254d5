"""Counter store port: the shared key-value/sorted-set store.

Holds sliding rate-limit windows and short-lived processing claims. Both
operations must be atomic per key against every process sharing the store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowHit:
    """Outcome of one atomic purge-count-record pass over a window."""

    admitted: bool
    count: int  # entries inside the window before this call
    oldest: float | None  # oldest surviving timestamp, after any insert


class CounterStore(ABC):
    """Abstract shared counter store."""

    @abstractmethod
    def hit_sliding_window(self, key: str, now: float, window_seconds: int, limit: int) -> WindowHit:
        """Purge entries older than ``now - window_seconds``, count the rest,
        and record ``now`` only if the count is below ``limit``. The key
        expires ``window_seconds`` after the last recorded entry."""
        ...

    @abstractmethod
    def claim(self, key: str, ttl_seconds: int) -> str | None:
        """Set ``key`` only if absent. Returns the holder token, or None when taken."""
        ...

    @abstractmethod
    def release(self, key: str, token: str) -> None:
        """Drop a claim, but only while ``token`` still holds it."""
        ...

    def close(self) -> None:  # noqa: B027
        """Release connections held by the store."""
