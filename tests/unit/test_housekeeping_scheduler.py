from dataclasses import replace

from social_push.config import settings
from social_push.services.housekeeping_scheduler import HousekeepingScheduler


def test_run_all_once_runs_every_job(service_ctx) -> None:
    scheduler = HousekeepingScheduler(service_ctx["service"], settings)
    service_ctx["service"].active_tokens("alice")

    results = scheduler.run_all_once()

    assert set(results) == {"token-cache-cleanup", "rate-limit-cleanup", "token-retention-sweep"}
    assert all(value == 0 for value in results.values())


def test_failing_job_is_logged_and_isolated(service_ctx, monkeypatch) -> None:
    def broken():
        raise RuntimeError("cleanup failed")

    monkeypatch.setattr(service_ctx["rate_limiter"], "cleanup", broken)
    scheduler = HousekeepingScheduler(service_ctx["service"], settings)

    results = scheduler.run_all_once()

    assert results["rate-limit-cleanup"] == 0


def test_disabled_scheduler_does_not_start(service_ctx) -> None:
    scheduler = HousekeepingScheduler(service_ctx["service"], replace(settings, housekeeping_scheduler_enabled=False))

    scheduler.start()

    assert scheduler.running is False


def test_start_and_stop(service_ctx) -> None:
    scheduler = HousekeepingScheduler(service_ctx["service"], replace(settings, housekeeping_scheduler_enabled=True))

    scheduler.start()
    assert scheduler.running is True
    scheduler.stop()
    assert scheduler.running is False
