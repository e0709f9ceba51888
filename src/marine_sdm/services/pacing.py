"""Minimum-interval pacing for rate-limited public APIs."""

from __future__ import annotations

import threading
import time


class RateLimiter:
    """Sleep so that consecutive calls are at least ``min_interval`` seconds apart.

    Thread-safe: concurrent batches share one limiter per service.
    """

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last
            if elapsed < self.min_interval:
                time.sleep(self.min_interval - elapsed)
            self._last = time.monotonic()
