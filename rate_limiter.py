# rate_limiter.py

import time
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding window limiter keyed by client address.

    Every hit counts, including rejected ones, so a client hammering the
    endpoint stays blocked until it backs off for a full window.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._last_prune = clock()
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Record a request from `key`; False when it exceeds the limit."""
        with self._lock:
            now = self.clock()
            self._prune(now)

            calls = [t for t in self._hits[key] if now - t < self.window_seconds]
            calls.append(now)
            # Cap the stored history; only the newest max_requests + 1 matter
            self._hits[key] = calls[-(self.max_requests + 1):]

        if len(calls) > self.max_requests:
            logger.warning(f"Rate limit exceeded for {key} ({self.max_requests} per {self.window_seconds:g}s).")
            return False
        return True

    def _prune(self, now: float):
        if now - self._last_prune < self.window_seconds:
            return
        stale = [key for key, calls in self._hits.items() if not calls or now - calls[-1] >= self.window_seconds]
        for key in stale:
            del self._hits[key]
        self._last_prune = now
