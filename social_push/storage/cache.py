from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from social_push.models.notification import Platform
from social_push.storage.token_store import DeviceTokenRecord, TokenStore

logger = logging.getLogger(__name__)


class TTLCache:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            record = self._data.get(key)
            if not record:
                return None
            value, expiry = record
            if self._clock() >= expiry:
                self._data.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expiry) in self._data.items() if now >= expiry]
            for key in expired:
                del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class TokenCache:
    """Read-through cache of active device tokens keyed by user id.

    Mutations go through the cache so the affected users are invalidated before the call returns.
    A stale read after an out-of-band change is tolerated for at most one TTL.
    """

    def __init__(
        self,
        store: TokenStore,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.token_store = store
        self._cache = TTLCache(ttl_seconds=ttl_seconds, clock=clock)

    def get_active_tokens(self, user_id: str) -> list[DeviceTokenRecord]:
        clean_user = (user_id or "").strip()
        if not clean_user:
            return []
        cached = self._cache.get(clean_user)
        if cached is not None:
            return list(cached)
        tokens = self.token_store.get_active_tokens(clean_user)
        self._cache.set(clean_user, tuple(tokens))
        return tokens

    def store(self, user_id: str, token: str, platform: Platform | str) -> tuple[DeviceTokenRecord, str | None]:
        record, previous_user_id = self.token_store.store(user_id, token, platform)
        self._cache.invalidate(record.user_id)
        if previous_user_id:
            self._cache.invalidate(previous_user_id)
        return record, previous_user_id

    def remove(self, token: str) -> str | None:
        owner = self.token_store.remove(token)
        if owner:
            self._cache.invalidate(owner)
        return owner

    def deactivate(self, token: str) -> str | None:
        owner = self.token_store.deactivate(token)
        if owner:
            self._cache.invalidate(owner)
        return owner

    def touch(self, token: str) -> None:
        self.token_store.touch(token)

    def get(self, token: str) -> DeviceTokenRecord | None:
        return self.token_store.get(token)

    def sweep_expired(self, retention_days: int) -> int:
        # Swept rows are already inactive, so no cached active set can contain them.
        return self.token_store.sweep_expired(retention_days)

    def invalidate(self, user_id: str) -> None:
        self._cache.invalidate(user_id)

    def clear(self) -> None:
        self._cache.clear()

    def cleanup(self) -> int:
        removed = self._cache.cleanup()
        if removed:
            logger.info("Token cache purged expired entries", extra={"removed": removed})
        return removed

    def __len__(self) -> int:
        return len(self._cache)
