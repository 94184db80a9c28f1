"""
castgate/ratelimit.py

Per-identifier moving-window limiter for the mutating endpoints.

A call is admitted (and recorded) only while fewer than `max_requests`
timestamps for that identifier fall inside the trailing window; a rejected
call is not recorded. The in-memory storage expires empty windows, so
identifiers that stop sending traffic are evicted.
"""

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter


class RateLimiter:
    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        if max_requests < 1 or window_seconds < 1:
            raise ValueError("max_requests and window_seconds must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    def allow(self, identifier: str) -> bool:
        return self._strategy.hit(self._item, str(identifier or "anonymous"))

    def reset(self) -> None:
        self._storage.reset()
