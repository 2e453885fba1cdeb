"""Sliding-window rate limiter for notification creation.

State is held in process memory, so limits are enforced per instance. When
the service runs on several instances each one counts independently.
"""

import threading
import time
from collections import deque
from collections.abc import Callable

from storefront.errors import RateLimitExceeded


class SlidingWindowRateLimiter:
    def __init__(self, window_seconds: int, max_requests: int, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}

    @staticmethod
    def key_for(user_id) -> str:
        return f"ratelimit:{user_id}"

    def _trim(self, hits: deque[float], now: float) -> None:
        boundary = now - self.window_seconds
        while hits and hits[0] <= boundary:
            hits.popleft()

    def hit(self, key: str) -> int:
        """Record one request for ``key``; raises once the window is full.

        Returns the number of requests remaining in the current window.
        """
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            self._trim(hits, now)
            if len(hits) >= self.max_requests:
                raise RateLimitExceeded(key, self.max_requests, self.window_seconds)
            hits.append(now)
            return self.max_requests - len(hits)

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return self.max_requests
            self._trim(hits, now)
            return max(self.max_requests - len(hits), 0)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
