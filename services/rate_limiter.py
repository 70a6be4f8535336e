# services/rate_limiter.py
"""
Rate limiter for external product-search calls.

Enforces two budgets on a single process-wide state:
- minimum spacing between completed calls (default 1 request/second)
- an hourly ceiling that resets when the hourly window elapses

Acquisition and recording are separate steps: a caller asks ``try_acquire()``
before the external call and reports ``record_call()`` after it completes, so
requests served from cache never consume budget. Denied requests are never
queued or retried here.
"""
import logging
import threading
import time
from typing import Callable, Optional

import config
from contracts.models import RateLimitDecision, RateLimiterState
from infra.logging import log_event

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600.0


class RateLimiter:
    """
    Per-second and per-hour budget gate.
    """

    def __init__(
        self,
        max_per_hour: int = config.RATE_LIMIT_MAX_PER_HOUR,
        min_interval_ms: int = config.RATE_LIMIT_MIN_INTERVAL_MS,
        clock: Callable[[], float] = time.time,
        state: Optional[RateLimiterState] = None,
    ):
        """
        Initialize limiter.

        Args:
            max_per_hour: Hourly ceiling of recorded calls
            min_interval_ms: Minimum spacing between recorded calls
            clock: Returns current time in epoch seconds
            state: Optional initial state (defaults to a fresh window at "now")
        """
        self.max_per_hour = max_per_hour
        self.min_interval_ms = min_interval_ms
        self._clock = clock
        self._lock = threading.Lock()
        self.state = state or RateLimiterState(hourly_window_started_at=clock())

    def _roll_window(self, now: float) -> None:
        if now - self.state.hourly_window_started_at > HOUR_SECONDS:
            self.state.hourly_count = 0
            self.state.hourly_window_started_at = now

    def try_acquire(self) -> RateLimitDecision:
        """
        Check whether an external call may be made now.

        Returns:
            Allowed decision, or Denied with RATE_LIMITED and retry_after_ms
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)

            if self.state.hourly_count >= self.max_per_hour:
                elapsed = now - self.state.hourly_window_started_at
                retry_ms = max(1, int((HOUR_SECONDS - elapsed) * 1000))
                log_event("rate_limited", scope="hourly", retry_after_ms=retry_ms)
                return RateLimitDecision(
                    allowed=False,
                    reason="RATE_LIMITED",
                    retry_after_ms=retry_ms,
                    message="Hourly rate limit exceeded. Please try again later.",
                )

            if self.state.last_call_at is not None:
                since_last_ms = (now - self.state.last_call_at) * 1000
                if since_last_ms < self.min_interval_ms:
                    retry_ms = max(1, int(self.min_interval_ms - since_last_ms))
                    logger.debug(f"Spacing denial, retry in {retry_ms}ms")
                    return RateLimitDecision(
                        allowed=False,
                        reason="RATE_LIMITED",
                        retry_after_ms=retry_ms,
                        message="Rate limit: Please wait before making another request.",
                    )

            return RateLimitDecision(allowed=True)

    def record_call(self) -> None:
        """Count a completed external call against both budgets."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            self.state.hourly_count += 1
            self.state.last_call_at = now

    @property
    def remaining_this_hour(self) -> int:
        with self._lock:
            self._roll_window(self._clock())
            return max(0, self.max_per_hour - self.state.hourly_count)


# Global limiter instance (process-wide budget)
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
