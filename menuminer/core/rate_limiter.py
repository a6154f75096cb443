"""
Rate limiting for MenuMiner.

Fixed-window request counter keyed by an identifier string. State lives in
memory for the lifetime of the limiter instance; the application creates one
instance at startup and keeps it on ``app.state``.
"""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Dict, List

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Fixed-window rate limiter.

    Timestamps older than the window are pruned lazily on every check.
    Identifiers are never evicted, so the map grows with the number of
    distinct keys; the scan flow uses a single constant key.

    Example:
        >>> limiter = RateLimiter(max_requests=10, window_seconds=60)
        >>> limiter.is_allowed("analyze-request")
        True
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}
        self._lock = Lock()

    def is_allowed(self, identifier: str) -> bool:
        """Record a request for ``identifier`` if it is under the limit."""
        with self._lock:
            now = self._clock()
            timestamps = self._prune(identifier, now)

            if len(timestamps) >= self.max_requests:
                return False

            timestamps.append(now)
            return True

    def get_remaining(self, identifier: str) -> int:
        """Requests still available to ``identifier`` in the current window."""
        with self._lock:
            timestamps = self._prune(identifier, self._clock())
            return max(0, self.max_requests - len(timestamps))

    def clear(self, identifier: str) -> None:
        """Forget the request history of ``identifier``."""
        with self._lock:
            self._requests.pop(identifier, None)

    def _prune(self, identifier: str, now: float) -> List[float]:
        valid = [ts for ts in self._requests.get(identifier, []) if now - ts < self.window_seconds]
        self._requests[identifier] = valid
        return valid
