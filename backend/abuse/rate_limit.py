"""Rate limiting for one-time-code requests.

The challenge issuer only sees a predicate: identifier -> throttled?
Predicates here:
  - SlidingWindowLimiter: N requests per identifier per window (in-memory)
  - suffix_predicate: demo throttle for identifiers ending in a given suffix
"""
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from config.settings import Settings
from observability.redaction import mask_identifier

logger = logging.getLogger(__name__)

RateLimitPredicate = Callable[[str], bool]


class SlidingWindowLimiter:
    """In-memory sliding-window counter per key."""

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, key: str) -> tuple[bool, Optional[str]]:
        """Check and record an event for key.

        Returns:
            (allowed: bool, reason: str | None)
        """
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep_locked(now)
            bucket = self._events.setdefault(key, deque())
            self._prune(bucket, now)

            if len(bucket) >= self.max_events:
                logger.warning(
                    "RATE_LIMITED: key=%s count=%d max=%d",
                    mask_identifier(key), len(bucket), self.max_events,
                )
                return False, (
                    f"Rate limit exceeded ({len(bucket)}/{self.max_events} "
                    f"in {self.window_seconds:g}s)"
                )

            bucket.append(now)
            return True, None

    def is_throttled(self, key: str) -> bool:
        allowed, _ = self.check(key)
        return not allowed

    def status(self, key: str) -> dict:
        now = self._clock()
        with self._lock:
            count = sum(1 for t in self._events.get(key, ()) if now - t < self.window_seconds)
        return {
            "current": count,
            "max": self.max_events,
            "window_seconds": self.window_seconds,
            "remaining": max(0, self.max_events - count),
        }

    def reset(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._events)

    def _prune(self, bucket: Deque[float], now: float) -> None:
        while bucket and now - bucket[0] >= self.window_seconds:
            bucket.popleft()

    def _sweep_locked(self, now: float) -> None:
        """Forget keys with no events left in the window. Caller holds the lock."""
        for key in list(self._events):
            bucket = self._events[key]
            self._prune(bucket, now)
            if not bucket:
                del self._events[key]
        self._last_sweep = now


def suffix_predicate(suffix: str) -> RateLimitPredicate:
    """Throttle identifiers ending in suffix (demo abuse pattern)."""
    def _predicate(identifier: str) -> bool:
        return bool(suffix) and identifier.strip().endswith(suffix)
    return _predicate


def any_of(*predicates: RateLimitPredicate) -> RateLimitPredicate:
    """Throttled when any predicate says so. Evaluation stops at the first hit."""
    def _predicate(identifier: str) -> bool:
        return any(p(identifier) for p in predicates)
    return _predicate


def build_otp_throttle(settings: Settings) -> RateLimitPredicate:
    """Default predicate for code requests from settings."""
    limiter = SlidingWindowLimiter(
        max_events=settings.OTP_REQUESTS_PER_WINDOW,
        window_seconds=settings.OTP_WINDOW_SECONDS,
    )
    if settings.OTP_DEMO_THROTTLE_SUFFIX:
        # Demo rule first so it never consumes window budget
        return any_of(suffix_predicate(settings.OTP_DEMO_THROTTLE_SUFFIX), limiter.is_throttled)
    return limiter.is_throttled
