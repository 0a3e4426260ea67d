from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from social_push.models.notification import ErrorCategory

logger = logging.getLogger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_BY_CATEGORY: dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.INVALID_TOKEN: ErrorSeverity.MEDIUM,
    ErrorCategory.EXPIRED_TOKEN: ErrorSeverity.MEDIUM,
    ErrorCategory.NETWORK_ERROR: ErrorSeverity.MEDIUM,
    ErrorCategory.RATE_LIMITED: ErrorSeverity.HIGH,
    ErrorCategory.PERMISSION_DENIED: ErrorSeverity.MEDIUM,
    ErrorCategory.INVALID_PAYLOAD: ErrorSeverity.MEDIUM,
    ErrorCategory.CONFIG_ERROR: ErrorSeverity.CRITICAL,
    ErrorCategory.UNKNOWN: ErrorSeverity.MEDIUM,
}


@dataclass(frozen=True)
class ErrorRateConfig:
    threshold_percent: float = 25.0
    critical_threshold: int = 5
    window_seconds: float = 3600.0
    cooldown_seconds: float = 900.0


@dataclass(frozen=True)
class _Outcome:
    at: float
    severity: ErrorSeverity | None


class ErrorRateTracker:
    """Rolling error rate over delivery outcomes, with a cooled-down threshold alert."""

    def __init__(
        self,
        config: ErrorRateConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_alert: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.config = config or ErrorRateConfig()
        self._clock = clock
        self._on_alert = on_alert
        self._outcomes: deque[_Outcome] = deque()
        self._last_alert_at: float | None = None
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        while self._outcomes and self._outcomes[0].at <= cutoff:
            self._outcomes.popleft()

    def _stats_locked(self, now: float) -> dict[str, Any]:
        self._prune(now)
        total = len(self._outcomes)
        severities = Counter(outcome.severity.value for outcome in self._outcomes if outcome.severity is not None)
        errors = sum(severities.values())
        return {
            "total_attempts": total,
            "total_errors": errors,
            "error_rate": round(errors / total * 100, 2) if total else 0.0,
            "critical_errors": severities.get(ErrorSeverity.CRITICAL.value, 0),
            "high_severity_errors": severities.get(ErrorSeverity.HIGH.value, 0),
            "medium_severity_errors": severities.get(ErrorSeverity.MEDIUM.value, 0),
            "low_severity_errors": severities.get(ErrorSeverity.LOW.value, 0),
            "window_minutes": round(self.config.window_seconds / 60, 2),
        }

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            self._outcomes.append(_Outcome(at=now, severity=None))
            self._prune(now)

    def record_failure(self, category: ErrorCategory) -> bool:
        with self._lock:
            now = self._clock()
            self._outcomes.append(_Outcome(at=now, severity=SEVERITY_BY_CATEGORY.get(category, ErrorSeverity.MEDIUM)))
            return self._check_alert(now)

    def _check_alert(self, now: float) -> bool:
        if self._last_alert_at is not None and now - self._last_alert_at < self.config.cooldown_seconds:
            return False
        stats = self._stats_locked(now)
        reasons: list[str] = []
        if stats["error_rate"] > self.config.threshold_percent:
            reasons.append(f"error rate {stats['error_rate']}% exceeds {self.config.threshold_percent}%")
        if stats["critical_errors"] >= self.config.critical_threshold:
            reasons.append(f"{stats['critical_errors']} critical errors reach {self.config.critical_threshold}")
        if not reasons:
            return False

        self._last_alert_at = now
        logger.error("Push delivery error alert: %s", "; ".join(reasons), extra={"error_stats": stats})
        if self._on_alert is not None:
            try:
                self._on_alert(stats)
            except Exception:
                logger.exception("Error alert callback failed")
        return True

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return self._stats_locked(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._last_alert_at = None
