from __future__ import annotations

import logging

from social_push.config import Settings, get_settings
from social_push.notifications.audit import AuditSink, InMemoryAuditSink, SqlAuditSink
from social_push.notifications.dispatcher import Dispatcher
from social_push.notifications.error_rate import ErrorRateConfig, ErrorRateTracker
from social_push.notifications.preferences import PreferenceProvider
from social_push.notifications.providers import BasePushGateway, FCMPushGateway, MockPushGateway
from social_push.notifications.rate_limiter import RateLimitConfig, RateLimiter
from social_push.notifications.service import NotificationService
from social_push.storage.cache import TokenCache
from social_push.storage.token_store import TokenStore

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> BasePushGateway:
    if settings.notification_provider == "fcm":
        if not settings.fcm_credentials:
            logger.warning("FCM selected without credentials; sends will fail with config_error")
        return FCMPushGateway(settings.fcm_credentials, settings.fcm_project_id)
    return MockPushGateway()


def build_audit_sink(settings: Settings) -> AuditSink:
    if settings.audit_sink == "database":
        return SqlAuditSink()
    return InMemoryAuditSink(max_entries=settings.audit_ring_size)


def build_error_tracker(settings: Settings) -> ErrorRateTracker:
    return ErrorRateTracker(
        ErrorRateConfig(
            threshold_percent=settings.error_rate_threshold_percent,
            critical_threshold=settings.critical_error_threshold,
            window_seconds=settings.error_rate_window_minutes * 60,
            cooldown_seconds=settings.error_alert_cooldown_minutes * 60,
        )
    )


def build_notification_service(
    settings: Settings | None = None,
    *,
    gateway: BasePushGateway | None = None,
    token_store: TokenStore | None = None,
    audit_sink: AuditSink | None = None,
    preferences: PreferenceProvider | None = None,
) -> NotificationService:
    settings = settings or get_settings()
    token_cache = TokenCache(token_store or TokenStore(), ttl_seconds=settings.token_cache_ttl_seconds)
    dispatcher = Dispatcher(
        gateway or build_gateway(settings),
        token_cache,
        max_retries=settings.dispatch_max_retries,
        backoff_base_seconds=settings.dispatch_backoff_base_seconds,
        timeout_seconds=settings.gateway_timeout_seconds,
        batch_size=settings.dispatch_batch_size,
        channel_id=settings.android_channel_id,
        error_tracker=build_error_tracker(settings),
    )
    rate_limiter = RateLimiter(
        RateLimitConfig(
            max_per_minute=settings.rate_limit_per_minute,
            max_per_hour=settings.rate_limit_per_hour,
            max_per_day=settings.rate_limit_per_day,
        )
    )
    return NotificationService(
        token_cache=token_cache,
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
        audit_sink=audit_sink or build_audit_sink(settings),
        preferences=preferences,
    )
