"""In-memory fixed-window rate limiter keyed by client IP."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, int(round(self.reset_at - now)))


class FixedWindowRateLimiter:
    """
    Per-key request counters with a reset timestamp.

    check() does not await between reading and updating a window, so on a
    single event loop concurrent requests from one IP cannot interleave
    inside it. Across worker processes the count is approximate.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10000,
    ):
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self.max_keys = max_keys
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def now(self) -> float:
        return self._clock()

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now > window.reset_at:
            if window is None and len(self._windows) >= self.max_keys:
                self.prune()
            window = _Window(count=1, reset_at=now + self.window_seconds)
            self._windows[key] = window
            return RateLimitDecision(True, self.max_requests - 1, window.reset_at)

        if window.count >= self.max_requests:
            logger.warning(f"Rate limit exceeded: key={key}, limit={self.max_requests}")
            return RateLimitDecision(False, 0, window.reset_at)

        window.count += 1
        return RateLimitDecision(True, self.max_requests - window.count, window.reset_at)

    def prune(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            self._windows.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
