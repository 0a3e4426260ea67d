from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"


class ErrorCategory(str, Enum):
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    INVALID_PAYLOAD = "invalid_payload"
    CONFIG_ERROR = "config_error"
    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_CATEGORIES

    @property
    def is_token_related(self) -> bool:
        return self in TOKEN_CATEGORIES


TRANSIENT_CATEGORIES = frozenset({ErrorCategory.NETWORK_ERROR, ErrorCategory.RATE_LIMITED, ErrorCategory.UNKNOWN})
TOKEN_CATEGORIES = frozenset({ErrorCategory.INVALID_TOKEN, ErrorCategory.EXPIRED_TOKEN})


class DispatchOutcome(str, Enum):
    DELIVERED = "delivered"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    NO_TOKENS = "no_tokens"
    COMPLIANCE_REJECTED = "compliance_rejected"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


class DeviceRegistration(BaseModel):
    user_id: str
    platform: Platform
    token: str


class NotificationPayload(BaseModel):
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    image_url: str | None = None


class SocialDispatchRequest(BaseModel):
    user_id: str
    notification_type: str
    payload: NotificationPayload


class DispatchResult(BaseModel):
    token: str
    success: bool
    error_category: ErrorCategory | None = None
    retries_used: int = Field(default=0, ge=0)
    error_message: str | None = None


class AggregateResult(BaseModel):
    sent_count: int = 0
    failed_count: int = 0
    errors: list[DispatchResult] = Field(default_factory=list)
    outcome: DispatchOutcome = DispatchOutcome.DELIVERED
    reason: str | None = None
    violations: list[str] = Field(default_factory=list)
    retry_after_ms: int | None = None


class DeviceTokenItem(BaseModel):
    id: str
    user_id: str
    token: str
    platform: Platform
    active: bool
    last_used_at: datetime
    created_at: datetime
    updated_at: datetime


class TokenRegistrationResponse(BaseModel):
    status: str
    user_id: str
    platform: Platform
    previous_user_id: str | None = None


class TokenSweepResponse(BaseModel):
    retention_days: int
    removed: int


class AuditEntryItem(BaseModel):
    id: str
    timestamp: datetime
    user_id: str
    notification_type: str
    recipient_count: int
    delivered_count: int
    failed_count: int
    success: bool
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditStatsResponse(BaseModel):
    total_notifications: int
    successful_notifications: int
    failed_notifications: int
    total_recipients: int
    total_delivered: int
    total_failed: int
    success_rate: float
