"""Client-side pacing of Bybit REST queries.

Bybit allows a limited number of private query requests per second per API
key. The sync fetches fills, orders and income concurrently from worker
threads sharing one client, so the limiter is thread-safe.

Reference: https://bybit-exchange.github.io/docs/v5/rate-limit
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class RateLimitConfig:
    """Sliding window limits.

    Attributes:
        query_rate: Maximum query requests per window (default: 10)
        window_seconds: Sliding window size in seconds (default: 1.0)
    """

    query_rate: int = 10
    window_seconds: float = 1.0


@dataclass
class RateLimiter:
    """Sliding window limiter shared by all threads using one API key.

    Example:
        limiter = RateLimiter(RateLimitConfig(query_rate=5))
        limiter.acquire()  # blocks until a slot is free
        session.get_executions(...)
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    _timestamps: deque = field(default_factory=deque, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def wait_time(self) -> float:
        """Seconds until the next request may be sent (0.0 if now)."""
        with self._lock:
            return self._wait_time_locked(self.clock())

    def _wait_time_locked(self, now: float) -> float:
        self._prune(now)
        if len(self._timestamps) < self.config.query_rate:
            return 0.0
        return max(0.0, self._timestamps[0] + self.config.window_seconds - now)

    def acquire(self) -> float:
        """Block until a request slot is free, then claim it.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self.clock()
                wait = self._wait_time_locked(now)
                if wait <= 0:
                    self._timestamps.append(now)
                    return waited
            self.sleep(wait)
            waited += wait

    def available(self) -> int:
        """Number of requests that could be sent immediately."""
        with self._lock:
            self._prune(self.clock())
            return max(0, self.config.query_rate - len(self._timestamps))
