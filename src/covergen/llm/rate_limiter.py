from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from covergen.errors import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window gate: at most ``max_requests`` calls per ``window_sec``.

    Timestamps are pruned lazily on every call. One instance is shared by the
    worker and the synchronous generation path, so every method takes the lock.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_sec: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_sec <= 0:
            raise ValueError("window_sec must be positive")
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock
        self._timestamps: deque[float] = deque()
        self._lock = threading.Lock()

    def can_proceed(self) -> bool:
        with self._lock:
            self._purge(self._clock())
            return len(self._timestamps) < self.max_requests

    def record(self) -> None:
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._timestamps) >= self.max_requests:
                wait = self._timestamps[0] + self.window_sec - now
                logger.warning("Rate limit reached max_requests=%s wait=%.1fs", self.max_requests, wait)
                raise RateLimited(wait)
            self._timestamps.append(now)

    def remaining(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return max(0, self.max_requests - len(self._timestamps))

    def time_until_next_slot(self) -> float:
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._timestamps) < self.max_requests:
                return 0.0
            return max(0.0, self._timestamps[0] + self.window_sec - now)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()

    def _purge(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_sec:
            self._timestamps.popleft()
