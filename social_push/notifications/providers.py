from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from firebase_admin import App, credentials, get_app, initialize_app, messaging
from firebase_admin.exceptions import FirebaseError

from social_push.models.notification import NotificationPayload, Platform
from social_push.notifications.errors import GatewayError

logger = logging.getLogger(__name__)

FCM_MAX_BATCH_SIZE = 500
FIREBASE_APP_NAME = "social_push"

# Messaging errors whose generic code is less specific than the FCM error code they carry.
_FIREBASE_ERROR_CODES: tuple[tuple[type[FirebaseError], str], ...] = (
    (messaging.UnregisteredError, "UNREGISTERED"),
    (messaging.SenderIdMismatchError, "SENDER_ID_MISMATCH"),
    (messaging.QuotaExceededError, "QUOTA_EXCEEDED"),
    (messaging.ThirdPartyAuthError, "THIRD_PARTY_AUTH_ERROR"),
)


@dataclass(frozen=True)
class GatewayMessage:
    token: str
    title: str
    body: str
    data: dict[str, str]
    image_url: str | None = None
    platform: str | None = None
    thread_id: str = "social"
    channel_id: str = "social"


def build_gateway_message(
    token: str,
    payload: NotificationPayload,
    *,
    platform: str | None = None,
    notification_type: str | None = None,
    channel_id: str = "social",
) -> GatewayMessage:
    return GatewayMessage(
        token=token,
        title=payload.title,
        body=payload.body,
        data=dict(payload.data),
        image_url=payload.image_url,
        platform=platform,
        thread_id=notification_type or payload.data.get("type", "social"),
        channel_id=channel_id,
    )


def build_fcm_message(message: GatewayMessage) -> messaging.Message:
    android = None
    apns = None
    if message.platform != Platform.IOS.value:
        android = messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(channel_id=message.channel_id, tag=message.thread_id),
        )
    if message.platform != Platform.ANDROID.value:
        apns = messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", thread_id=message.thread_id)),
        )
    return messaging.Message(
        token=message.token,
        notification=messaging.Notification(title=message.title, body=message.body, image=message.image_url),
        data=message.data or None,
        android=android,
        apns=apns,
    )


def firebase_error_code(exc: FirebaseError) -> str | None:
    for error_type, code in _FIREBASE_ERROR_CODES:
        if isinstance(exc, error_type):
            return code
    return exc.code


def _firebase_status(exc: FirebaseError) -> int | None:
    response = getattr(exc, "http_response", None)
    return getattr(response, "status_code", None)


def load_credentials(raw: str) -> credentials.Certificate:
    path = Path(raw)
    if path.exists():
        return credentials.Certificate(str(path))
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid FCM_CREDENTIALS value; must be JSON or a file path") from exc
    return credentials.Certificate(data)


class BasePushGateway(ABC):
    name: str = "base"
    max_batch_size: int = FCM_MAX_BATCH_SIZE

    @abstractmethod
    async def send(self, message: GatewayMessage) -> str:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class MockPushGateway(BasePushGateway):
    name = "mock"

    def __init__(self) -> None:
        self.sent: list[GatewayMessage] = []

    async def send(self, message: GatewayMessage) -> str:
        self.sent.append(message)
        return f"mock-{uuid.uuid4().hex[:12]}"


class FCMPushGateway(BasePushGateway):
    """Sends through the Firebase Admin SDK, which owns OAuth token refresh and the HTTP v1 wire format.

    The SDK call is blocking and runs in a worker thread. `sender` defaults to `messaging.send`.
    """

    name = "fcm"

    def __init__(
        self,
        credentials_source: str = "",
        project_id: str = "",
        *,
        app: App | None = None,
        sender: Callable[..., Any] | None = None,
    ) -> None:
        self.credentials_source = credentials_source
        self.project_id = project_id
        self._app = app
        self._sender = sender or messaging.send
        self._app_lock = threading.Lock()

    def _ensure_app(self) -> App:
        with self._app_lock:
            if self._app is not None:
                return self._app
            try:
                self._app = get_app(FIREBASE_APP_NAME)
            except ValueError:
                if not self.credentials_source:
                    raise GatewayError("FCM credentials are not configured", code="MISSING_CREDENTIALS") from None
                try:
                    credential = load_credentials(self.credentials_source)
                except ValueError as exc:
                    raise GatewayError(str(exc), code="MISSING_CREDENTIALS") from exc
                options = {"projectId": self.project_id} if self.project_id else None
                self._app = initialize_app(credential, options, name=FIREBASE_APP_NAME)
                logger.info("Firebase app initialised", extra={"project_id": self.project_id or None})
            return self._app

    async def send(self, message: GatewayMessage) -> str:
        app = self._ensure_app()
        try:
            message_id = await asyncio.to_thread(self._sender, build_fcm_message(message), app=app)
        except FirebaseError as exc:
            raise GatewayError(
                f"FCM rejected message: {exc}",
                code=firebase_error_code(exc),
                status_code=_firebase_status(exc),
            ) from exc
        except ValueError as exc:
            # The SDK validates the message locally before sending.
            raise GatewayError(f"FCM message is malformed: {exc}", code="INVALID_ARGUMENT") from exc
        # Any return from the SDK means FCM accepted the message.
        return str(message_id) if message_id else ""
