from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from starlette.concurrency import run_in_threadpool

from social_push.models.notification import (
    AggregateResult,
    DispatchOutcome,
    DispatchResult,
    NotificationPayload,
    Platform,
    TokenRegistrationResponse,
)
from social_push.notifications.audit import AuditSink, build_audit_entry
from social_push.notifications.compliance import ComplianceValidator
from social_push.notifications.dispatcher import Dispatcher
from social_push.notifications.errors import (
    ComplianceViolation,
    DegradedPreferenceCheck,
    RateLimitExceeded,
    ValidationError,
)
from social_push.notifications.preferences import AllowAllPreferences, PreferenceProvider
from social_push.notifications.rate_limiter import RateLimiter
from social_push.storage.cache import TokenCache
from social_push.storage.token_store import DeviceTokenRecord, mask_token

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        token_cache: TokenCache,
        dispatcher: Dispatcher,
        rate_limiter: RateLimiter,
        audit_sink: AuditSink,
        compliance: ComplianceValidator | None = None,
        preferences: PreferenceProvider | None = None,
    ) -> None:
        self.token_cache = token_cache
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter
        self.audit_sink = audit_sink
        self.compliance = compliance or ComplianceValidator()
        self.preferences = preferences or AllowAllPreferences()

    def register_token(self, user_id: str, token: str, platform: Platform | str) -> TokenRegistrationResponse:
        record, previous_user_id = self.token_cache.store(user_id, token, platform)
        return TokenRegistrationResponse(
            status="reassigned" if previous_user_id else "registered",
            user_id=record.user_id,
            platform=Platform(record.platform),
            previous_user_id=previous_user_id,
        )

    def unregister_token(self, token: str) -> bool:
        return self.token_cache.remove(token) is not None

    def active_tokens(self, user_id: str) -> list[DeviceTokenRecord]:
        return self.token_cache.get_active_tokens(user_id)

    async def _is_enabled(self, user_id: str, notification_type: str) -> bool:
        try:
            return bool(await self.preferences.is_notification_type_enabled(user_id, notification_type))
        except Exception as exc:
            degraded = DegradedPreferenceCheck(user_id, notification_type, exc)
            logger.warning(
                "Preference check failed, allowing dispatch",
                extra={"user_id": user_id, "notification_type": notification_type, "error": str(degraded)},
            )
            return True

    def _check_compliance(self, notification_type: str, payload: NotificationPayload) -> None:
        result = self.compliance.validate(notification_type, payload)
        if not result.valid:
            raise ComplianceViolation(result.violations)

    def _check_rate_limit(self, user_id: str) -> None:
        decision = self.rate_limiter.check_and_record(user_id)
        if not decision.allowed:
            raise RateLimitExceeded(decision.reason or "rate limited", decision.retry_after_ms or 0)

    async def _audit(
        self,
        user_id: str,
        notification_type: str,
        *,
        success: bool,
        recipient_count: int = 0,
        delivered_count: int = 0,
        failed_count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = build_audit_entry(
            user_id,
            notification_type,
            recipient_count=recipient_count,
            delivered_count=delivered_count,
            failed_count=failed_count,
            success=success,
            metadata=metadata,
        )
        try:
            await run_in_threadpool(self.audit_sink.record, entry)
        except Exception as exc:
            logger.exception(
                "Audit write failed",
                extra={"user_id": user_id, "notification_type": notification_type, "error": str(exc)},
            )

    async def dispatch_social(
        self,
        user_id: str,
        notification_type: str,
        payload: NotificationPayload,
    ) -> AggregateResult:
        clean_user = (user_id or "").strip()
        if not clean_user:
            raise ValidationError("user_id is required")

        if not await self._is_enabled(clean_user, notification_type):
            await self._audit(
                clean_user,
                notification_type,
                success=True,
                metadata={"outcome": DispatchOutcome.SKIPPED.value, "reason": "disabled by user preference"},
            )
            return AggregateResult(outcome=DispatchOutcome.SKIPPED, reason="disabled by user preference")

        try:
            self._check_compliance(notification_type, payload)
            self._check_rate_limit(clean_user)
        except ComplianceViolation as exc:
            logger.info(
                "Notification rejected by compliance",
                extra={"user_id": clean_user, "notification_type": notification_type, "violations": exc.violations},
            )
            await self._audit(
                clean_user,
                notification_type,
                success=False,
                metadata={"outcome": DispatchOutcome.COMPLIANCE_REJECTED.value, "violations": exc.violations},
            )
            return AggregateResult(
                outcome=DispatchOutcome.COMPLIANCE_REJECTED,
                reason="compliance violation",
                violations=exc.violations,
            )
        except RateLimitExceeded as exc:
            await self._audit(
                clean_user,
                notification_type,
                success=False,
                metadata={
                    "outcome": DispatchOutcome.RATE_LIMITED.value,
                    "reason": exc.reason,
                    "retry_after_ms": exc.retry_after_ms,
                },
            )
            return AggregateResult(
                outcome=DispatchOutcome.RATE_LIMITED,
                reason=exc.reason,
                retry_after_ms=exc.retry_after_ms,
            )

        try:
            records = await run_in_threadpool(self.token_cache.get_active_tokens, clean_user)
        except Exception as exc:
            logger.exception("Token lookup failed", extra={"user_id": clean_user, "error": str(exc)})
            await self._audit(
                clean_user,
                notification_type,
                success=False,
                metadata={"outcome": DispatchOutcome.ERROR.value, "reason": f"token lookup failed: {exc}"},
            )
            return AggregateResult(outcome=DispatchOutcome.ERROR, reason="token lookup failed")

        if not records:
            await self._audit(
                clean_user,
                notification_type,
                success=True,
                metadata={"outcome": DispatchOutcome.NO_TOKENS.value},
            )
            return AggregateResult(outcome=DispatchOutcome.NO_TOKENS, reason="no active device tokens")

        try:
            results = await self.dispatcher.dispatch_many(records, payload, notification_type)
        except Exception as exc:
            logger.exception("Fan-out failed", extra={"user_id": clean_user, "error": str(exc)})
            await self._audit(
                clean_user,
                notification_type,
                success=False,
                recipient_count=len(records),
                failed_count=len(records),
                metadata={"outcome": DispatchOutcome.ERROR.value, "reason": f"fan-out failed: {exc}"},
            )
            return AggregateResult(
                failed_count=len(records),
                outcome=DispatchOutcome.ERROR,
                reason="fan-out failed",
            )

        aggregate = self._aggregate(results)
        await self._audit(
            clean_user,
            notification_type,
            success=aggregate.sent_count > 0,
            recipient_count=len(records),
            delivered_count=aggregate.sent_count,
            failed_count=aggregate.failed_count,
            metadata=self._dispatch_metadata(aggregate),
        )
        logger.info(
            "Social notification dispatched",
            extra={
                "user_id": clean_user,
                "notification_type": notification_type,
                "sent": aggregate.sent_count,
                "failed": aggregate.failed_count,
            },
        )
        return aggregate

    @staticmethod
    def _aggregate(results: list[DispatchResult]) -> AggregateResult:
        errors = [result for result in results if not result.success]
        sent = len(results) - len(errors)
        if not errors:
            outcome = DispatchOutcome.DELIVERED
        elif sent:
            outcome = DispatchOutcome.PARTIAL
        else:
            outcome = DispatchOutcome.FAILED
        return AggregateResult(sent_count=sent, failed_count=len(errors), errors=errors, outcome=outcome)

    @staticmethod
    def _dispatch_metadata(aggregate: AggregateResult) -> dict[str, Any]:
        categories = Counter(result.error_category.value for result in aggregate.errors if result.error_category)
        return {
            "outcome": aggregate.outcome.value,
            "error_categories": dict(categories),
            "failed_tokens": [mask_token(result.token) for result in aggregate.errors],
        }
