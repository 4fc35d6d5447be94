# geostory/middleware/rate_limiter.py
# Publish-path rate limiting to dampen abuse
# Uses a coarse in-memory fixed window: the whole table is dropped at each window boundary

import time
from typing import Callable, Dict, Tuple

from fastapi import Request

MAX_KEY_LEN = 64


class FixedWindowCounter:
    """
    Fixed window rate limiter.

    Approximate by design: a client can send up to 2x max_requests across a
    window boundary. Good enough for abuse dampening, not for fairness.
    """

    def __init__(
        self,
        window_size: float = 60,
        max_requests: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_size = window_size  # seconds
        self.max_requests = max_requests
        self._clock = clock
        self._counters: Dict[str, int] = {}
        self._window_start = clock()

    def _maybe_reset(self, now: float) -> None:
        if now - self._window_start >= self.window_size:
            self._counters.clear()
            # align to the boundary so windows do not drift
            elapsed_windows = (now - self._window_start) // self.window_size
            self._window_start += elapsed_windows * self.window_size

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Count a request for key.
        Returns (is_allowed, remaining_requests).
        """
        self._maybe_reset(self._clock())
        count = self._counters.get(key, 0) + 1
        self._counters[key] = count
        remaining = max(0, self.max_requests - count)
        return count <= self.max_requests, remaining

    def retry_after(self) -> int:
        """Seconds until the current window closes (at least 1)."""
        left = self.window_size - (self._clock() - self._window_start)
        return max(1, int(left + 0.999))

    def reset(self) -> None:
        self._counters.clear()
        self._window_start = self._clock()

    def __len__(self) -> int:
        return len(self._counters)


def get_client_key(request: Request) -> str:
    """Extract client identifier from request.

    Uses the socket peer. Behind a trusted proxy uvicorn's proxy_headers
    already rewrites it from X-Forwarded-For, so raw headers are not read here.
    """
    if request.client and request.client.host:
        return request.client.host[:MAX_KEY_LEN]

    return "unknown"
