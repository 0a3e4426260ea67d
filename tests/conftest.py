from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from social_push.notifications.errors import GatewayError
from social_push.notifications.providers import BasePushGateway, GatewayMessage


class ScriptedGateway(BasePushGateway):
    name = "scripted"

    def __init__(self) -> None:
        self.scripts: dict[str, list[BaseException | None]] = {}
        self.calls: list[GatewayMessage] = []

    def script(self, token: str, *outcomes: BaseException | None) -> None:
        self.scripts[token] = list(outcomes)

    def always_fail(self, token: str, code: str, times: int = 10) -> None:
        self.script(token, *[GatewayError(f"{code} failure", code=code) for _ in range(times)])

    def attempts_for(self, token: str) -> int:
        return sum(1 for message in self.calls if message.token == token)

    async def send(self, message: GatewayMessage) -> str:
        self.calls.append(message)
        outcomes = self.scripts.get(message.token)
        if outcomes:
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome
        return f"projects/test/messages/{len(self.calls)}"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def session_factory(tmp_path, monkeypatch) -> Generator[sessionmaker, None, None]:
    import social_push.models.db as db_module
    from social_push.models import tables  # noqa: F401
    from social_push.models.db import Base

    db_file = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False}, future=True)
    TestingSessionLocal = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
    )

    monkeypatch.setattr(db_module, "engine", engine, raising=False)
    monkeypatch.setattr(db_module, "SessionLocal", TestingSessionLocal, raising=False)

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def token_store(session_factory):
    from social_push.storage.token_store import TokenStore

    return TokenStore(session_factory)


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def service_ctx(token_store, gateway, recorded_sleep) -> dict:
    from social_push.notifications.audit import InMemoryAuditSink
    from social_push.notifications.dispatcher import Dispatcher
    from social_push.notifications.preferences import StaticPreferences
    from social_push.notifications.rate_limiter import RateLimiter
    from social_push.notifications.service import NotificationService
    from social_push.storage.cache import TokenCache

    token_cache = TokenCache(token_store)
    dispatcher = Dispatcher(gateway, token_cache, timeout_seconds=5, sleep=recorded_sleep)
    rate_limiter = RateLimiter()
    audit_sink = InMemoryAuditSink()
    preferences = StaticPreferences()
    service = NotificationService(
        token_cache=token_cache,
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
        audit_sink=audit_sink,
        preferences=preferences,
    )
    return {
        "service": service,
        "token_cache": token_cache,
        "token_store": token_store,
        "dispatcher": dispatcher,
        "rate_limiter": rate_limiter,
        "audit_sink": audit_sink,
        "preferences": preferences,
        "gateway": gateway,
        "sleep": recorded_sleep,
    }


@pytest.fixture
def test_ctx(session_factory, service_ctx) -> Generator[dict, None, None]:
    from social_push.api.routes import get_notification_service
    from social_push.app import app

    app.dependency_overrides[get_notification_service] = lambda: service_ctx["service"]
    with TestClient(app) as client:
        yield {"client": client, "session_local": session_factory, **service_ctx}
    app.dependency_overrides.clear()
