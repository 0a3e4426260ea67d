from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from social_push.models import db as db_module
from social_push.models.notification import Platform
from social_push.models.tables import DeviceToken
from social_push.notifications.errors import ValidationError
from social_push.utils.time import to_naive_utc, utc_now_naive

logger = logging.getLogger(__name__)


def mask_token(token: str) -> str:
    return f"{token[:12]}..." if len(token) > 12 else token


@dataclass(frozen=True)
class DeviceTokenRecord:
    id: str
    user_id: str
    token: str
    platform: str
    active: bool
    last_used_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: DeviceToken) -> DeviceTokenRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            token=row.token,
            platform=row.platform,
            active=row.active,
            last_used_at=row.last_used_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class TokenStore:
    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        factory = self._session_factory or db_module.SessionLocal
        return factory()

    @staticmethod
    def _require(value: str | None, field: str) -> str:
        clean = (value or "").strip()
        if not clean:
            raise ValidationError(f"{field} is required and cannot be empty")
        return clean

    @staticmethod
    def _normalize_platform(platform: Platform | str) -> str:
        raw = platform.value if isinstance(platform, Platform) else str(platform or "")
        clean = raw.strip().lower()
        if clean not in {p.value for p in Platform}:
            raise ValidationError(f"Unsupported platform: {platform}")
        return clean

    def _upsert(self, db: Session, user_id: str, token: str, platform: str) -> tuple[DeviceTokenRecord, str | None]:
        row = db.execute(select(DeviceToken).where(DeviceToken.token == token)).scalar_one_or_none()
        now = utc_now_naive()
        previous_user_id: str | None = None

        if row is None:
            row = DeviceToken(
                id=str(uuid.uuid4()),
                user_id=user_id,
                token=token,
                platform=platform,
                active=True,
                last_used_at=now,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
        else:
            if row.user_id != user_id:
                previous_user_id = row.user_id
            row.user_id = user_id
            row.platform = platform
            row.active = True
            row.last_used_at = now
            row.updated_at = now

        db.flush()
        return DeviceTokenRecord.from_row(row), previous_user_id

    def store(self, user_id: str, token: str, platform: Platform | str) -> tuple[DeviceTokenRecord, str | None]:
        clean_user = self._require(user_id, "user_id")
        clean_token = self._require(token, "token")
        clean_platform = self._normalize_platform(platform)

        with self._session() as db:
            try:
                record, previous_user_id = self._upsert(db, clean_user, clean_token, clean_platform)
                db.commit()
            except IntegrityError:
                # A concurrent registration inserted the same token first; retry as an update.
                db.rollback()
                record, previous_user_id = self._upsert(db, clean_user, clean_token, clean_platform)
                db.commit()

        if previous_user_id:
            logger.info(
                "Device token reassigned",
                extra={"token": mask_token(clean_token), "user_id": clean_user, "previous_user_id": previous_user_id},
            )
        else:
            logger.info("Device token stored", extra={"token": mask_token(clean_token), "user_id": clean_user})
        return record, previous_user_id

    def get(self, token: str) -> DeviceTokenRecord | None:
        clean_token = (token or "").strip()
        if not clean_token:
            return None
        with self._session() as db:
            row = db.execute(select(DeviceToken).where(DeviceToken.token == clean_token)).scalar_one_or_none()
            return DeviceTokenRecord.from_row(row) if row is not None else None

    def get_active_tokens(self, user_id: str) -> list[DeviceTokenRecord]:
        clean_user = (user_id or "").strip()
        if not clean_user:
            return []
        with self._session() as db:
            rows = db.execute(
                select(DeviceToken)
                .where(DeviceToken.user_id == clean_user, DeviceToken.active.is_(True))
                .order_by(DeviceToken.last_used_at.desc(), DeviceToken.created_at.desc())
            ).scalars().all()
            return [DeviceTokenRecord.from_row(row) for row in rows]

    def _mark_inactive(self, token: str, reason: str) -> str | None:
        clean_token = self._require(token, "token")
        with self._session() as db:
            row = db.execute(select(DeviceToken).where(DeviceToken.token == clean_token)).scalar_one_or_none()
            if row is None:
                return None
            owner = row.user_id
            if row.active:
                row.active = False
                row.updated_at = utc_now_naive()
                db.commit()
                logger.info("Device token deactivated", extra={"token": mask_token(clean_token), "reason": reason})
            return owner

    def remove(self, token: str) -> str | None:
        return self._mark_inactive(token, reason="unregistered")

    def deactivate(self, token: str) -> str | None:
        return self._mark_inactive(token, reason="delivery_failure")

    def touch(self, token: str) -> None:
        try:
            with self._session() as db:
                db.execute(update(DeviceToken).where(DeviceToken.token == token).values(last_used_at=utc_now_naive()))
                db.commit()
        except Exception as exc:
            logger.warning("Device token touch failed", extra={"token": mask_token(token or ""), "error": str(exc)})

    def sweep_expired(self, retention_days: int, now: datetime | None = None) -> int:
        if retention_days < 0:
            raise ValidationError("retention_days must not be negative")
        reference = to_naive_utc(now) if now is not None else utc_now_naive()
        cutoff = reference - timedelta(days=retention_days)
        with self._session() as db:
            result = db.execute(
                delete(DeviceToken).where(
                    DeviceToken.active.is_(False),
                    DeviceToken.last_used_at < cutoff,
                    DeviceToken.updated_at < cutoff,
                )
            )
            db.commit()
        removed = int(result.rowcount or 0)
        if removed:
            logger.info("Expired device tokens purged", extra={"removed": removed, "retention_days": retention_days})
        return removed
