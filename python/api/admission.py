"""
Ingestion Admission Control

Fixed-window request counter keyed by caller network address, gating the
unauthenticated scan-event submission endpoint.

Each hit:
- resets the caller's window when more than window_seconds have passed
  since it started,
- increments the counter unconditionally (rejected attempts count too),
- is rejected when the post-increment count exceeds max_requests.

Elapsed windows are swept from inside hit() at most once per window length,
so the map only holds callers seen within the last two windows.

State is in-process. Multiple workers each keep their own counters.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class RateLimitDecision:
    """Outcome of one admission check"""
    allowed: bool
    limit: int
    remaining: int
    reset_in: float

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


@dataclass
class _Window:
    start: float
    count: int = 0


class FixedWindowRateLimiter:
    """Thread-safe fixed-window limiter.

    Args:
        max_requests: Attempts allowed per window
        window_seconds: Window length
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        clock: Optional[Callable[[], float]] = None
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock()

    def hit(self, key: str) -> RateLimitDecision:
        """Count one attempt for key and decide whether to admit it."""
        with self._lock:
            now = self._clock()
            if now - self._last_sweep > self.window_seconds:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or now - window.start > self.window_seconds:
                window = _Window(start=now)
                self._windows[key] = window

            window.count += 1
            count = window.count
            reset_in = max(0.0, self.window_seconds - (now - window.start))

        return RateLimitDecision(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_in=reset_in
        )

    def _sweep(self, now: float) -> int:
        # Caller holds the lock
        expired = [
            key for key, window in self._windows.items()
            if now - window.start > self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        return len(expired)

    def purge_expired(self) -> int:
        """Drop windows that have already elapsed. Returns how many."""
        with self._lock:
            return self._sweep(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
