from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from social_push.models.notification import DispatchResult, ErrorCategory, NotificationPayload
from social_push.notifications.error_rate import ErrorRateTracker
from social_push.notifications.errors import GatewayError, categorize_gateway_error
from social_push.notifications.providers import BasePushGateway, GatewayMessage, build_gateway_message
from social_push.storage.token_store import DeviceTokenRecord, mask_token

logger = logging.getLogger(__name__)


class DeliveryState(str, Enum):
    ATTEMPTING = "attempting"
    DELIVERED = "delivered"
    FAILED_PERMANENT = "failed_permanent"


class TokenLifecycle(Protocol):
    def deactivate(self, token: str) -> str | None: ...

    def touch(self, token: str) -> None: ...


class Dispatcher:
    def __init__(
        self,
        gateway: BasePushGateway,
        token_store: TokenLifecycle,
        *,
        max_retries: int = 2,
        backoff_base_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
        batch_size: int = 500,
        channel_id: str = "social",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        error_tracker: ErrorRateTracker | None = None,
    ) -> None:
        self.gateway = gateway
        self.token_store = token_store
        self.max_retries = max(0, max_retries)
        self.backoff_base_seconds = backoff_base_seconds
        self.timeout_seconds = timeout_seconds
        self.batch_size = max(1, min(batch_size, gateway.max_batch_size))
        self.channel_id = channel_id
        self._sleep = sleep
        self.error_tracker = error_tracker or ErrorRateTracker()

    def backoff_delay(self, retries_used: int) -> float:
        return self.backoff_base_seconds * (2**retries_used)

    async def _attempt(self, message: GatewayMessage) -> tuple[ErrorCategory | None, str | None]:
        try:
            await asyncio.wait_for(self.gateway.send(message), timeout=self.timeout_seconds)
            return None, None
        except asyncio.TimeoutError:
            return ErrorCategory.NETWORK_ERROR, f"gateway call exceeded {self.timeout_seconds}s"
        except GatewayError as exc:
            return categorize_gateway_error(exc.code, exc.status_code), str(exc)
        except Exception as exc:
            logger.exception("Unexpected gateway failure", extra={"token": mask_token(message.token)})
            return ErrorCategory.UNKNOWN, str(exc)

    async def dispatch(
        self,
        token: str,
        payload: NotificationPayload,
        platform: str | None = None,
        notification_type: str | None = None,
    ) -> DispatchResult:
        message = build_gateway_message(
            token,
            payload,
            platform=platform,
            notification_type=notification_type,
            channel_id=self.channel_id,
        )
        retries_used = 0
        state = DeliveryState.ATTEMPTING

        while state is DeliveryState.ATTEMPTING:
            category, error_message = await self._attempt(message)
            if category is None:
                state = DeliveryState.DELIVERED
                break
            if category.is_transient and retries_used < self.max_retries:
                delay = self.backoff_delay(retries_used)
                logger.info(
                    "Transient push failure, retrying",
                    extra={
                        "token": mask_token(token),
                        "category": category.value,
                        "retries_used": retries_used,
                        "delay_seconds": delay,
                    },
                )
                await self._sleep(delay)
                retries_used += 1
                continue
            state = DeliveryState.FAILED_PERMANENT

        if state is DeliveryState.DELIVERED:
            self.error_tracker.record_success()
            await run_in_threadpool(self.token_store.touch, token)
            return DispatchResult(token=token, success=True, retries_used=retries_used)

        logger.warning(
            "Push delivery failed",
            extra={"token": mask_token(token), "category": category.value, "retries_used": retries_used},
        )
        self.error_tracker.record_failure(category)
        if category.is_token_related:
            try:
                await run_in_threadpool(self.token_store.deactivate, token)
            except Exception:
                logger.exception("Failed to deactivate token", extra={"token": mask_token(token)})
        return DispatchResult(
            token=token,
            success=False,
            error_category=category,
            retries_used=retries_used,
            error_message=error_message,
        )

    async def dispatch_many(
        self,
        records: Sequence[DeviceTokenRecord],
        payload: NotificationPayload,
        notification_type: str | None = None,
    ) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            results.extend(
                await asyncio.gather(
                    *(
                        self.dispatch(record.token, payload, record.platform, notification_type)
                        for record in batch
                    )
                )
            )
        return results
