from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from social_push.notifications.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_per_minute: int = 60
    max_per_hour: int = 1000
    max_per_day: int = 10000


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: str | None = None
    retry_after_ms: int | None = None


@dataclass(frozen=True)
class _WindowRule:
    name: str
    duration_seconds: float
    reason: str


# Checked in this order; the first exceeded window is the one reported.
_WINDOWS = (
    _WindowRule("minute", 60.0, "per-minute limit"),
    _WindowRule("hour", 3600.0, "per-hour limit"),
    _WindowRule("day", 86400.0, "per-day limit"),
)
_LONGEST_WINDOW_SECONDS = _WINDOWS[-1].duration_seconds


class RateLimiter:
    """Per-user sliding-window limiter.

    Each user keeps a deque of accepted request timestamps, oldest first. A window counts the
    entries newer than `now - duration`, so the count over any trailing span never exceeds the
    ceiling for that span.
    """

    def __init__(self, config: RateLimitConfig | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _limit_for(self, window: str) -> int:
        if window == "minute":
            return self.config.max_per_minute
        if window == "hour":
            return self.config.max_per_hour
        return self.config.max_per_day

    @staticmethod
    def _require_user(user_id: str) -> str:
        clean = (user_id or "").strip()
        if not clean:
            raise ValidationError("user_id is required for rate limiting")
        return clean

    @staticmethod
    def _prune(timestamps: deque[float], now: float) -> None:
        cutoff = now - _LONGEST_WINDOW_SECONDS
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    @staticmethod
    def _in_window(timestamps: deque[float], now: float, duration: float) -> list[float]:
        cutoff = now - duration
        return [stamp for stamp in timestamps if stamp > cutoff]

    def check_and_record(self, user_id: str) -> RateLimitDecision:
        clean_user = self._require_user(user_id)
        with self._lock:
            now = self._clock()
            timestamps = self._requests.setdefault(clean_user, deque())
            self._prune(timestamps, now)

            for rule in _WINDOWS:
                counted = self._in_window(timestamps, now, rule.duration_seconds)
                if len(counted) < self._limit_for(rule.name):
                    continue
                # The window reopens once its oldest counted request ages out.
                remaining = counted[0] + rule.duration_seconds - now
                retry_after_ms = max(1, math.ceil(remaining * 1000))
                logger.info(
                    "Rate limit rejected dispatch",
                    extra={"user_id": clean_user, "window": rule.name, "retry_after_ms": retry_after_ms},
                )
                return RateLimitDecision(allowed=False, reason=rule.reason, retry_after_ms=retry_after_ms)

            timestamps.append(now)
            return RateLimitDecision(allowed=True)

    def get_counts(self, user_id: str) -> dict[str, int]:
        clean_user = self._require_user(user_id)
        with self._lock:
            now = self._clock()
            timestamps = self._requests.get(clean_user) or deque()
            return {rule.name: len(self._in_window(timestamps, now, rule.duration_seconds)) for rule in _WINDOWS}

    def reset(self, user_id: str) -> None:
        with self._lock:
            self._requests.pop((user_id or "").strip(), None)

    def reset_all(self) -> None:
        with self._lock:
            self._requests.clear()

    def cleanup(self) -> int:
        removed = 0
        with self._lock:
            now = self._clock()
            for user_id in list(self._requests):
                timestamps = self._requests[user_id]
                self._prune(timestamps, now)
                if not timestamps:
                    del self._requests[user_id]
                    removed += 1
        if removed:
            logger.info("Rate limiter dropped idle users", extra={"removed": removed})
        return removed

    def stats(self) -> dict[str, int]:
        with self._lock:
            cutoff = self._clock() - 3600.0
            active_users = sum(1 for stamps in self._requests.values() if stamps and stamps[-1] > cutoff)
            return {"tracked_users": len(self._requests), "active_users": active_users}
