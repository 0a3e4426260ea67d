from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from social_push.models import db as db_module
from social_push.models.tables import NotificationAuditLog
from social_push.utils.time import to_naive_utc, utc_now_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    id: str
    timestamp: datetime
    user_id: str
    notification_type: str
    recipient_count: int
    delivered_count: int
    failed_count: int
    success: bool
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: NotificationAuditLog) -> AuditEntry:
        return cls(
            id=row.id,
            timestamp=row.timestamp,
            user_id=row.user_id,
            notification_type=row.notification_type,
            recipient_count=row.recipient_count,
            delivered_count=row.delivered_count,
            failed_count=row.failed_count,
            success=row.success,
            metadata=dict(row.metadata_json or {}),
        )


def build_audit_entry(
    user_id: str,
    notification_type: str,
    *,
    recipient_count: int = 0,
    delivered_count: int = 0,
    failed_count: int = 0,
    success: bool,
    metadata: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> AuditEntry:
    return AuditEntry(
        id=str(uuid.uuid4()),
        timestamp=to_naive_utc(timestamp) if timestamp else utc_now_naive(),
        user_id=user_id,
        notification_type=notification_type,
        recipient_count=recipient_count,
        delivered_count=delivered_count,
        failed_count=failed_count,
        success=success,
        metadata=dict(metadata or {}),
    )


def summarize(entries: list[AuditEntry]) -> dict[str, Any]:
    total = len(entries)
    successful = sum(1 for entry in entries if entry.success)
    return {
        "total_notifications": total,
        "successful_notifications": successful,
        "failed_notifications": total - successful,
        "total_recipients": sum(entry.recipient_count for entry in entries),
        "total_delivered": sum(entry.delivered_count for entry in entries),
        "total_failed": sum(entry.failed_count for entry in entries),
        "success_rate": round(successful / total, 4) if total else 0.0,
    }


def _entry_to_json(entry: AuditEntry) -> dict[str, Any]:
    data = asdict(entry)
    data["timestamp"] = entry.timestamp.isoformat()
    return data


class AuditSink(ABC):
    @abstractmethod
    def record(self, entry: AuditEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def recent(self, user_id: str | None = None, notification_type: str | None = None, limit: int = 100) -> list[AuditEntry]:
        raise NotImplementedError

    @abstractmethod
    def in_range(self, start: datetime, end: datetime) -> list[AuditEntry]:
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        raise NotImplementedError

    def export_json(self, limit: int = 1000) -> str:
        return json.dumps([_entry_to_json(entry) for entry in self.recent(limit=limit)], indent=2)


class InMemoryAuditSink(AuditSink):
    def __init__(self, max_entries: int = 10000) -> None:
        self.max_entries = max(1, max_entries)
        self._entries: deque[AuditEntry] = deque(maxlen=self.max_entries)
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def _snapshot(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def recent(self, user_id: str | None = None, notification_type: str | None = None, limit: int = 100) -> list[AuditEntry]:
        matches = [
            entry
            for entry in reversed(self._snapshot())
            if (user_id is None or entry.user_id == user_id)
            and (notification_type is None or entry.notification_type == notification_type)
        ]
        return matches[: max(0, limit)]

    def in_range(self, start: datetime, end: datetime) -> list[AuditEntry]:
        lower, upper = to_naive_utc(start), to_naive_utc(end)
        return [entry for entry in self._snapshot() if lower <= entry.timestamp <= upper]

    def stats(self) -> dict[str, Any]:
        return summarize(self._snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqlAuditSink(AuditSink):
    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        factory = self._session_factory or db_module.SessionLocal
        return factory()

    def record(self, entry: AuditEntry) -> None:
        with self._session() as db:
            db.add(
                NotificationAuditLog(
                    id=entry.id,
                    timestamp=entry.timestamp,
                    user_id=entry.user_id,
                    notification_type=entry.notification_type,
                    recipient_count=entry.recipient_count,
                    delivered_count=entry.delivered_count,
                    failed_count=entry.failed_count,
                    success=entry.success,
                    metadata_json=dict(entry.metadata),
                )
            )
            db.commit()

    def recent(self, user_id: str | None = None, notification_type: str | None = None, limit: int = 100) -> list[AuditEntry]:
        stmt = select(NotificationAuditLog)
        if user_id is not None:
            stmt = stmt.where(NotificationAuditLog.user_id == user_id)
        if notification_type is not None:
            stmt = stmt.where(NotificationAuditLog.notification_type == notification_type)
        stmt = stmt.order_by(NotificationAuditLog.timestamp.desc()).limit(max(0, limit))
        with self._session() as db:
            return [AuditEntry.from_row(row) for row in db.execute(stmt).scalars().all()]

    def in_range(self, start: datetime, end: datetime) -> list[AuditEntry]:
        stmt = (
            select(NotificationAuditLog)
            .where(NotificationAuditLog.timestamp >= to_naive_utc(start))
            .where(NotificationAuditLog.timestamp <= to_naive_utc(end))
            .order_by(NotificationAuditLog.timestamp.asc())
        )
        with self._session() as db:
            return [AuditEntry.from_row(row) for row in db.execute(stmt).scalars().all()]

    def stats(self) -> dict[str, Any]:
        stmt = select(
            func.count(NotificationAuditLog.id),
            func.coalesce(func.sum(case((NotificationAuditLog.success.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(NotificationAuditLog.recipient_count), 0),
            func.coalesce(func.sum(NotificationAuditLog.delivered_count), 0),
            func.coalesce(func.sum(NotificationAuditLog.failed_count), 0),
        )
        with self._session() as db:
            total, successful, recipients, delivered, failed = db.execute(stmt).one()
        total = int(total or 0)
        successful = int(successful or 0)
        return {
            "total_notifications": total,
            "successful_notifications": successful,
            "failed_notifications": total - successful,
            "total_recipients": int(recipients),
            "total_delivered": int(delivered),
            "total_failed": int(failed),
            "success_rate": round(successful / total, 4) if total else 0.0,
        }
