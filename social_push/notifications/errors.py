from __future__ import annotations

from social_push.models.notification import ErrorCategory


class PushDispatchError(Exception):
    pass


class ValidationError(PushDispatchError, ValueError):
    pass


class ComplianceViolation(PushDispatchError):
    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations) or "content rejected")


class RateLimitExceeded(PushDispatchError):
    def __init__(self, reason: str, retry_after_ms: int) -> None:
        self.reason = reason
        self.retry_after_ms = retry_after_ms
        super().__init__(f"{reason} (retry after {retry_after_ms} ms)")


class DispatchError(PushDispatchError):
    def __init__(self, category: ErrorCategory, message: str = "") -> None:
        self.category = category
        super().__init__(message or category.value)


class DegradedPreferenceCheck(PushDispatchError):
    def __init__(self, user_id: str, notification_type: str, cause: BaseException) -> None:
        self.user_id = user_id
        self.notification_type = notification_type
        self.cause = cause
        super().__init__(f"Preference lookup failed for user={user_id} type={notification_type}: {cause}")


class GatewayError(PushDispatchError):
    """Structured failure returned by a push gateway.

    `code` is the machine-readable gateway code (FCM or Firebase Admin error code, legacy
    `messaging/*` code or APNs reason); `status_code` is the HTTP status when one was received.
    """

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        self.code = code
        self.status_code = status_code
        super().__init__(message)


_CODE_CATEGORIES: dict[str, ErrorCategory] = {
    # Transport failures raised by the gateways themselves
    "NETWORK_ERROR": ErrorCategory.NETWORK_ERROR,
    "TIMEOUT": ErrorCategory.NETWORK_ERROR,
    "MISSING_CREDENTIALS": ErrorCategory.CONFIG_ERROR,
    # Generic Firebase Admin codes
    "NOT_FOUND": ErrorCategory.INVALID_TOKEN,
    "RESOURCE_EXHAUSTED": ErrorCategory.RATE_LIMITED,
    "DEADLINE_EXCEEDED": ErrorCategory.NETWORK_ERROR,
    # FCM HTTP v1
    "UNREGISTERED": ErrorCategory.INVALID_TOKEN,
    "INVALID_ARGUMENT": ErrorCategory.INVALID_PAYLOAD,
    "QUOTA_EXCEEDED": ErrorCategory.RATE_LIMITED,
    "UNAVAILABLE": ErrorCategory.NETWORK_ERROR,
    "INTERNAL": ErrorCategory.NETWORK_ERROR,
    "SENDER_ID_MISMATCH": ErrorCategory.CONFIG_ERROR,
    "THIRD_PARTY_AUTH_ERROR": ErrorCategory.CONFIG_ERROR,
    "PERMISSION_DENIED": ErrorCategory.PERMISSION_DENIED,
    "UNAUTHENTICATED": ErrorCategory.PERMISSION_DENIED,
    # Legacy Admin SDK
    "MESSAGING/INVALID-REGISTRATION-TOKEN": ErrorCategory.INVALID_TOKEN,
    "MESSAGING/REGISTRATION-TOKEN-NOT-REGISTERED": ErrorCategory.EXPIRED_TOKEN,
    "MESSAGING/INVALID-ARGUMENT": ErrorCategory.INVALID_PAYLOAD,
    "MESSAGING/INVALID-PAYLOAD": ErrorCategory.INVALID_PAYLOAD,
    "MESSAGING/PAYLOAD-SIZE-LIMIT-EXCEEDED": ErrorCategory.INVALID_PAYLOAD,
    "MESSAGING/QUOTA-EXCEEDED": ErrorCategory.RATE_LIMITED,
    "MESSAGING/TOO-MANY-REQUESTS": ErrorCategory.RATE_LIMITED,
    "MESSAGING/INTERNAL-ERROR": ErrorCategory.NETWORK_ERROR,
    "MESSAGING/SERVER-UNAVAILABLE": ErrorCategory.NETWORK_ERROR,
    "MESSAGING/UNAVAILABLE": ErrorCategory.NETWORK_ERROR,
    "MESSAGING/MISMATCHED-CREDENTIAL": ErrorCategory.CONFIG_ERROR,
    "MESSAGING/INVALID-APNS-CREDENTIALS": ErrorCategory.CONFIG_ERROR,
    "MESSAGING/AUTHENTICATION-ERROR": ErrorCategory.PERMISSION_DENIED,
    # APNs reasons
    "BADDEVICETOKEN": ErrorCategory.INVALID_TOKEN,
    "DEVICETOKENNOTFORTOPIC": ErrorCategory.INVALID_TOKEN,
    "UNREGISTERED_DEVICE": ErrorCategory.EXPIRED_TOKEN,
    "EXPIREDTOKEN": ErrorCategory.EXPIRED_TOKEN,
    "PAYLOADTOOLARGE": ErrorCategory.INVALID_PAYLOAD,
    "BADTOPIC": ErrorCategory.CONFIG_ERROR,
    "INVALIDPROVIDERTOKEN": ErrorCategory.PERMISSION_DENIED,
    "EXPIREDPROVIDERTOKEN": ErrorCategory.PERMISSION_DENIED,
    "FORBIDDEN": ErrorCategory.PERMISSION_DENIED,
    "TOOMANYREQUESTS": ErrorCategory.RATE_LIMITED,
    "SERVICEUNAVAILABLE": ErrorCategory.NETWORK_ERROR,
    "INTERNALSERVERERROR": ErrorCategory.NETWORK_ERROR,
}


def _normalize_code(code: str) -> str:
    clean = code.strip().upper()
    # APNs uses "Unregistered" while FCM uses "UNREGISTERED" for different meanings.
    if code.strip() == "Unregistered":
        return "UNREGISTERED_DEVICE"
    return clean


def categorize_gateway_error(code: str | None, status_code: int | None = None) -> ErrorCategory:
    if code:
        category = _CODE_CATEGORIES.get(_normalize_code(code))
        if category is not None:
            return category

    if status_code is None:
        return ErrorCategory.UNKNOWN
    if status_code == 400:
        return ErrorCategory.INVALID_PAYLOAD
    if status_code in {401, 403}:
        return ErrorCategory.PERMISSION_DENIED
    if status_code == 404:
        return ErrorCategory.INVALID_TOKEN
    if status_code == 410:
        return ErrorCategory.EXPIRED_TOKEN
    if status_code == 413:
        return ErrorCategory.INVALID_PAYLOAD
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if 500 <= status_code < 600:
        return ErrorCategory.NETWORK_ERROR
    return ErrorCategory.UNKNOWN
