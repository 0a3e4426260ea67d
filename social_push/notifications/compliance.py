from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from social_push.models.notification import NotificationPayload

MAX_TITLE_CHARS = 100
MAX_BODY_CHARS = 500
MAX_PAYLOAD_BYTES = 4096
REQUIRED_DATA_KEYS = ("type", "navigationTarget")

# Only social traffic may use the push channel; anything else is rejected outright.
SOCIAL_NOTIFICATION_TYPES = frozenset(
    {
        "friend_request",
        "friend_accepted",
        "follow_request",
        "new_follower",
        "venue_share",
        "group_outing_invite",
        "group_outing_response",
        "group_outing_reminder",
        "collection_follow",
        "collection_update",
        "activity_like",
        "activity_comment",
        "friend_checkin_nearby",
    }
)

_PROHIBITED_PATTERNS = (
    re.compile(r"\b(viagra|cialis|casino|lottery|winner|congratulations)\b", re.IGNORECASE),
    re.compile(r"\b(click here|act now|limited time|urgent)\b", re.IGNORECASE),
    re.compile(r"\$\$\$|\U0001F4B0{3}"),
    re.compile(r"\b(free money|get rich|make money fast)\b", re.IGNORECASE),
)
_REPEATED_PUNCTUATION = re.compile(r"[!?]{2,}")
_MIN_LETTERS_FOR_CAPS_CHECK = 10


@dataclass(frozen=True)
class ComplianceResult:
    valid: bool
    violations: list[str] = field(default_factory=list)


def serialized_payload_size(payload: NotificationPayload) -> int:
    notification: dict[str, str] = {"title": payload.title, "body": payload.body}
    if payload.image_url:
        notification["imageUrl"] = payload.image_url
    message = {"notification": notification, "data": payload.data}
    return len(json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


def _spam_violations(body: str) -> list[str]:
    violations: list[str] = []
    for pattern in _PROHIBITED_PATTERNS:
        if pattern.search(body):
            violations.append("body contains prohibited content")
            break

    letters = [ch for ch in body if ch.isalpha()]
    if len(letters) >= _MIN_LETTERS_FOR_CAPS_CHECK:
        upper_ratio = sum(1 for ch in letters if ch.isupper()) / len(letters)
        if upper_ratio > 0.5:
            violations.append("body has excessive uppercase characters")

    if len(_REPEATED_PUNCTUATION.findall(body)) > 2:
        violations.append("body has excessive repeated punctuation")
    return violations


def validate_notification(notification_type: str, payload: NotificationPayload) -> ComplianceResult:
    violations: list[str] = []

    if notification_type not in SOCIAL_NOTIFICATION_TYPES:
        violations.append(f"notification type '{notification_type}' is not permitted")

    title = payload.title or ""
    body = payload.body or ""
    if not title.strip():
        violations.append("title must not be empty")
    if not body.strip():
        violations.append("body must not be empty")
    if len(title) > MAX_TITLE_CHARS:
        violations.append(f"title exceeds {MAX_TITLE_CHARS} characters")
    if len(body) > MAX_BODY_CHARS:
        violations.append(f"body exceeds {MAX_BODY_CHARS} characters")

    for key in REQUIRED_DATA_KEYS:
        if not (payload.data.get(key) or "").strip():
            violations.append(f"data is missing required key '{key}'")

    size = serialized_payload_size(payload)
    if size > MAX_PAYLOAD_BYTES:
        violations.append(f"payload size {size} bytes exceeds {MAX_PAYLOAD_BYTES} bytes")

    violations.extend(_spam_violations(body))
    return ComplianceResult(valid=not violations, violations=violations)


class ComplianceValidator:
    def validate(self, notification_type: str, payload: NotificationPayload) -> ComplianceResult:
        return validate_notification(notification_type, payload)
