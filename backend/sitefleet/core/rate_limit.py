from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

CHECK_SUBDOMAIN_WINDOW_SECONDS = 60.0
CHECK_SUBDOMAIN_MAX_REQUESTS = 30


class RateLimiter(Protocol):
    def is_rate_limited(self, key: str) -> bool: ...


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Per-key counter that resets once `now > reset_at`.

    Process-local: entries live for the process lifetime and are not shared
    between workers. Swap in a RateLimiter backed by an atomic external counter
    when running more than one process.
    """

    def __init__(
        self,
        limit: int = CHECK_SUBDOMAIN_MAX_REQUESTS,
        window_seconds: float = CHECK_SUBDOMAIN_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def is_rate_limited(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                self._entries[key] = RateLimitEntry(count=1, reset_at=now + self.window_seconds)
                return False

            entry.count += 1
            return entry.count > self.limit


_subdomain_rate_limiter = FixedWindowRateLimiter()


def get_subdomain_rate_limiter() -> RateLimiter:
    return _subdomain_rate_limiter
