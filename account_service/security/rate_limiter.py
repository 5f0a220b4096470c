"""In-memory sliding window rate limiter for account RPCs."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Deque


class SlidingWindowRateLimiter:
    """Thread-safe sliding window limiter keyed by tenant/caller strings.

    This is the only in-process shared state of the service; every other
    handler is stateless.
    """

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: defaultdict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._last_sweep = time.monotonic()

    def allow(self, key: str) -> bool:
        """Record an attempt and return ``True`` when it is within the configured limit."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep > self._window:
                self._sweep(now)
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True

    def _sweep(self, now: float) -> None:
        """Drop keys whose newest attempt fell out of the window; caller holds the lock."""
        stale = [key for key, queue in self._events.items() if not queue or now - queue[-1] > self._window]
        for key in stale:
            del self._events[key]
        self._last_sweep = now

    def reset(self, key: str) -> None:
        """Forget recorded attempts for ``key``, e.g. after a successful login."""
        with self._lock:
            self._events.pop(key, None)
