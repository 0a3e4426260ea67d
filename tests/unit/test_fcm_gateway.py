import asyncio

import pytest
from firebase_admin import exceptions, messaging

from social_push.models.notification import ErrorCategory, NotificationPayload
from social_push.notifications.dispatcher import Dispatcher
from social_push.notifications.errors import GatewayError
from social_push.notifications.providers import FCMPushGateway, build_fcm_message, build_gateway_message


def _payload() -> NotificationPayload:
    return NotificationPayload(
        title="Venue shared",
        body="Jo shared Blue Bar with you",
        data={"type": "venue_share", "navigationTarget": "venues/7"},
        image_url="https://img.example/blue.png",
    )


def _message(platform: str | None = "android"):
    return build_gateway_message("tok-1", _payload(), platform=platform, notification_type="venue_share")


class FakeSender:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.messages: list[messaging.Message] = []
        self.apps: list[object] = []

    def __call__(self, message, app=None):
        self.messages.append(message)
        self.apps.append(app)
        outcome = self.outcomes.pop(0) if self.outcomes else "projects/demo/messages/1"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _gateway(sender: FakeSender) -> FCMPushGateway:
    return FCMPushGateway(app=object(), sender=sender)


def test_send_returns_message_id_and_builds_android_message() -> None:
    sender = FakeSender("projects/demo/messages/abc")
    gateway = _gateway(sender)

    message_id = asyncio.run(gateway.send(_message()))

    assert message_id == "projects/demo/messages/abc"
    sent = sender.messages[0]
    assert sent.token == "tok-1"
    assert sent.notification.title == "Venue shared"
    assert sent.notification.image == "https://img.example/blue.png"
    assert sent.data == {"type": "venue_share", "navigationTarget": "venues/7"}
    assert sent.android.priority == "high"
    assert sent.android.notification.channel_id == "social"
    assert sent.android.notification.tag == "venue_share"
    assert sent.apns is None
    assert sender.apps[0] is gateway._app


def test_ios_message_carries_only_apns_config() -> None:
    built = build_fcm_message(_message("ios"))

    assert built.android is None
    assert built.apns.payload.aps.thread_id == "venue_share"
    assert built.apns.payload.aps.sound == "default"


def test_unknown_platform_gets_both_configs() -> None:
    built = build_fcm_message(_message(None))

    assert built.android is not None
    assert built.apns is not None


@pytest.mark.parametrize("reply", [None, "", "OK", 0])
def test_any_sdk_return_is_a_single_delivery(reply, service_ctx) -> None:
    sender = FakeSender(reply)
    dispatcher = Dispatcher(_gateway(sender), service_ctx["token_cache"], sleep=service_ctx["sleep"])

    result = asyncio.run(dispatcher.dispatch("tok-1", _payload(), platform="android"))

    assert result.success is True
    assert result.retries_used == 0
    assert len(sender.messages) == 1
    assert service_ctx["sleep"].delays == []


def test_unregistered_token_maps_to_invalid_token(service_ctx) -> None:
    service_ctx["token_store"].store("alice", "tok-1", "android")
    sender = FakeSender(messaging.UnregisteredError("Requested entity was not found."))
    dispatcher = Dispatcher(_gateway(sender), service_ctx["token_cache"], sleep=service_ctx["sleep"])

    result = asyncio.run(dispatcher.dispatch("tok-1", _payload(), platform="android"))

    assert result.error_category is ErrorCategory.INVALID_TOKEN
    assert len(sender.messages) == 1
    assert service_ctx["token_store"].get("tok-1").active is False


def test_firebase_error_code_is_preserved() -> None:
    gateway = _gateway(FakeSender(exceptions.UnavailableError("backend down")))

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(gateway.send(_message()))

    assert excinfo.value.code == "UNAVAILABLE"
    assert excinfo.value.status_code is None


def test_quota_error_uses_the_specific_fcm_code() -> None:
    gateway = _gateway(FakeSender(messaging.QuotaExceededError("slow down")))

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(gateway.send(_message()))

    assert excinfo.value.code == "QUOTA_EXCEEDED"


def test_locally_rejected_message_is_invalid_argument() -> None:
    gateway = _gateway(FakeSender(ValueError("Message.data must not contain non-string values.")))

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(gateway.send(_message()))

    assert excinfo.value.code == "INVALID_ARGUMENT"


def test_missing_credentials_is_a_config_error(service_ctx) -> None:
    sender = FakeSender()
    dispatcher = Dispatcher(FCMPushGateway(sender=sender), service_ctx["token_cache"], sleep=service_ctx["sleep"])

    result = asyncio.run(dispatcher.dispatch("tok-1", _payload()))

    assert result.success is False
    assert result.error_category is ErrorCategory.CONFIG_ERROR
    assert sender.messages == []


def test_unreadable_credentials_are_a_config_error() -> None:
    gateway = FCMPushGateway("not json and not a file", sender=FakeSender())

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(gateway.send(_message()))

    assert excinfo.value.code == "MISSING_CREDENTIALS"
