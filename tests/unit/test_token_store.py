from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from social_push.models.tables import DeviceToken
from social_push.notifications.errors import ValidationError
from social_push.storage.token_store import TokenStore, mask_token


def _set_times(session_factory, token: str, last_used_at: datetime, updated_at: datetime | None = None) -> None:
    with session_factory() as db:
        db.execute(
            update(DeviceToken)
            .where(DeviceToken.token == token)
            .values(last_used_at=last_used_at, updated_at=updated_at or last_used_at)
        )
        db.commit()


def test_store_creates_active_token(token_store) -> None:
    record, previous = token_store.store("alice", "tok-a", "ios")

    assert previous is None
    assert record.user_id == "alice"
    assert record.platform == "ios"
    assert record.active is True
    assert [r.token for r in token_store.get_active_tokens("alice")] == ["tok-a"]


def test_same_token_for_other_user_is_reassigned(token_store, session_factory) -> None:
    token_store.store("alice", "shared-token", "android")
    record, previous = token_store.store("bob", "shared-token", "android")

    assert previous == "alice"
    assert record.user_id == "bob"
    assert token_store.get_active_tokens("alice") == []
    assert [r.token for r in token_store.get_active_tokens("bob")] == ["shared-token"]
    with session_factory() as db:
        rows = db.execute(select(DeviceToken).where(DeviceToken.token == "shared-token")).scalars().all()
    assert len(rows) == 1


def test_reregistering_inactive_token_reactivates(token_store) -> None:
    token_store.store("alice", "tok-a", "ios")
    token_store.remove("tok-a")
    token_store.store("alice", "tok-a", "ios")

    assert [r.token for r in token_store.get_active_tokens("alice")] == ["tok-a"]


@pytest.mark.parametrize(
    ("user_id", "token", "platform"),
    [("", "tok", "ios"), ("   ", "tok", "ios"), ("alice", "", "ios"), ("alice", "tok", "windows")],
)
def test_store_rejects_invalid_input(token_store, user_id, token, platform) -> None:
    with pytest.raises(ValidationError):
        token_store.store(user_id, token, platform)


def test_remove_is_soft_delete(token_store) -> None:
    token_store.store("alice", "tok-a", "ios")

    assert token_store.remove("tok-a") == "alice"
    record = token_store.get("tok-a")
    assert record is not None
    assert record.active is False
    assert token_store.get_active_tokens("alice") == []


def test_deactivate_is_idempotent(token_store) -> None:
    token_store.store("alice", "tok-a", "android")

    assert token_store.deactivate("tok-a") == "alice"
    assert token_store.deactivate("tok-a") == "alice"
    assert token_store.deactivate("missing") is None
    assert token_store.get("tok-a").active is False


def test_active_tokens_are_ordered_by_last_use(token_store, session_factory) -> None:
    base = datetime(2026, 1, 1, 12, 0, 0)
    for token in ("old", "newest", "middle"):
        token_store.store("alice", token, "ios")
    _set_times(session_factory, "old", base)
    _set_times(session_factory, "middle", base + timedelta(hours=1))
    _set_times(session_factory, "newest", base + timedelta(hours=2))

    assert [r.token for r in token_store.get_active_tokens("alice")] == ["newest", "middle", "old"]


def test_active_tokens_for_blank_user_is_empty(token_store) -> None:
    assert token_store.get_active_tokens("") == []
    assert token_store.get_active_tokens("nobody") == []


def test_touch_refreshes_last_used(token_store, session_factory) -> None:
    token_store.store("alice", "tok-a", "ios")
    stale = datetime(2020, 1, 1)
    _set_times(session_factory, "tok-a", stale)

    token_store.touch("tok-a")

    assert token_store.get("tok-a").last_used_at > stale


def test_touch_failure_is_not_propagated() -> None:
    def broken_session():
        raise RuntimeError("database unavailable")

    TokenStore(broken_session).touch("tok-a")


def test_sweep_removes_only_old_inactive_tokens(token_store, session_factory) -> None:
    now = datetime(2026, 6, 1)
    token_store.store("alice", "old-inactive", "ios")
    token_store.store("alice", "recent-inactive", "ios")
    token_store.store("alice", "old-active", "android")
    token_store.remove("old-inactive")
    token_store.remove("recent-inactive")
    _set_times(session_factory, "old-inactive", now - timedelta(days=45))
    _set_times(session_factory, "recent-inactive", now - timedelta(days=5))
    _set_times(session_factory, "old-active", now - timedelta(days=90))

    removed = token_store.sweep_expired(30, now=now)

    assert removed == 1
    assert token_store.get("old-inactive") is None
    assert token_store.get("recent-inactive") is not None
    assert token_store.get("old-active") is not None


def test_sweep_rejects_negative_retention(token_store) -> None:
    with pytest.raises(ValidationError):
        token_store.sweep_expired(-1)


def test_mask_token_truncates() -> None:
    assert mask_token("abcdefghijklmnopqrstuvwxyz") == "abcdefghijkl..."
    assert mask_token("short") == "short"
