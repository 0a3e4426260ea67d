from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from social_push.config import Settings, get_settings
from social_push.notifications.service import NotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HousekeepingJob:
    name: str
    interval_seconds: float
    run: Callable[[], int]


class HousekeepingScheduler:
    def __init__(self, service: NotificationService, settings: Settings | None = None) -> None:
        self.service = service
        self.settings = settings or get_settings()
        self.jobs = [
            HousekeepingJob(
                "token-cache-cleanup",
                max(1, self.settings.token_cache_cleanup_interval_seconds),
                self.service.token_cache.cleanup,
            ),
            HousekeepingJob(
                "rate-limit-cleanup",
                max(1, self.settings.rate_limit_cleanup_interval_seconds),
                self.service.rate_limiter.cleanup,
            ),
            HousekeepingJob(
                "token-retention-sweep",
                max(60, self.settings.token_sweep_interval_minutes * 60),
                self._sweep_tokens,
            ),
        ]
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def _sweep_tokens(self) -> int:
        return self.service.token_cache.sweep_expired(self.settings.token_retention_days)

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if not self.settings.housekeeping_scheduler_enabled:
            return
        if self.running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run_loop, args=(job,), name=f"housekeeping-{job.name}", daemon=True)
            for job in self.jobs
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "Housekeeping scheduler started",
            extra={"jobs": {job.name: job.interval_seconds for job in self.jobs}},
        )

    def stop(self) -> None:
        self._stop_event.set()
        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=5)
        self._threads = []

    def _run_loop(self, job: HousekeepingJob) -> None:
        while not self._stop_event.wait(job.interval_seconds):
            self.run_job(job)

    def run_job(self, job: HousekeepingJob) -> int:
        try:
            removed = job.run()
            if removed:
                logger.info("Housekeeping job removed entries", extra={"job": job.name, "removed": removed})
            return removed
        except Exception as exc:
            logger.exception("Housekeeping job failed", extra={"job": job.name, "error": str(exc)})
            return 0

    def run_all_once(self) -> dict[str, int]:
        return {job.name: self.run_job(job) for job in self.jobs}
