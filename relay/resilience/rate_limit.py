"""Fixed-window rate limiting for API keys.

Requests are counted per (subject, window bucket) where the bucket is
floor(now / window). Counts reset when a new bucket starts, so a client
can burst up to 2x the limit across a window boundary. That is a known
property of fixed windows, not a bug.

State is in-memory only. Losing it on restart means every subject starts
a fresh window; it never disables limiting.

Usage:
    limiter = FixedWindowRateLimiter()
    limiter.start()

    result = limiter.check(str(api_key.id), api_key.rate_limit, api_key.rate_limit_window)
    if not result.allowed:
        ...  # translate into a throttling response

    limiter.stop()
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from relay.config import RATE_LIMIT_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    """Counter for one subject within one window bucket.

    Attributes:
        count: Requests admitted in this window
        reset_at: Epoch milliseconds after which the window is stale
    """
    count: int
    reset_at: int


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Requests left in the current window
        reset_at: Epoch milliseconds when the window resets
    """
    allowed: bool
    remaining: int
    reset_at: int


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter keyed by subject.

    check() reads and increments under a single lock so concurrent callers
    can never admit more than `limit` requests in a window.
    """

    def __init__(
        self,
        sweep_interval: float = RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize rate limiter.

        Args:
            sweep_interval: Seconds between background evictions
            clock: Returns the current time in seconds (defaults to time.time)
        """
        self.sweep_interval = sweep_interval
        self._clock = clock or time.time
        self._windows: dict[tuple[str, int], RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(self, subject_id: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Admit or reject one request for a subject.

        Args:
            subject_id: Identity being limited (usually the API key id)
            limit: Max requests per window
            window_seconds: Window length

        Returns:
            RateLimitResult for this request
        """
        now = self._now_ms()
        window_ms = window_seconds * 1000
        key = (subject_id, now // window_ms)

        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = RateLimitWindow(count=0, reset_at=now + window_ms)
                self._windows[key] = window

            allowed = window.count < limit
            if allowed:
                window.count += 1

            result = RateLimitResult(
                allowed=allowed,
                remaining=max(0, limit - window.count),
                reset_at=window.reset_at,
            )

        if not allowed:
            logger.debug(f"Rate limit exceeded for {subject_id}")

        return result

    def sweep(self) -> int:
        """Evict expired windows.

        Returns:
            Number of windows removed
        """
        now = self._now_ms()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now > w.reset_at]
            for k in expired:
                del self._windows[k]

        if expired:
            logger.debug(f"Evicted {len(expired)} expired rate limit windows")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def start(self) -> None:
        """Start the background eviction sweep."""
        if self._sweeper is not None:
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper,
            name="rate-limit-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop(self) -> None:
        """Halt the sweep and release all windows."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=self.sweep_interval)
            self._sweeper = None
        with self._lock:
            self._windows.clear()

    def _run_sweeper(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            self.sweep()
