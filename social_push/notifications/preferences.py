from __future__ import annotations

from typing import Protocol


class PreferenceProvider(Protocol):
    async def is_notification_type_enabled(self, user_id: str, notification_type: str) -> bool: ...


class AllowAllPreferences:
    async def is_notification_type_enabled(self, user_id: str, notification_type: str) -> bool:
        return True


class StaticPreferences:
    def __init__(self, disabled: dict[str, set[str]] | None = None) -> None:
        self._disabled: dict[str, set[str]] = {user: set(types) for user, types in (disabled or {}).items()}

    def disable(self, user_id: str, notification_type: str) -> None:
        self._disabled.setdefault(user_id, set()).add(notification_type)

    def enable(self, user_id: str, notification_type: str) -> None:
        self._disabled.get(user_id, set()).discard(notification_type)

    async def is_notification_type_enabled(self, user_id: str, notification_type: str) -> bool:
        return notification_type not in self._disabled.get(user_id, set())
