from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from social_push.config import settings
from social_push.models.notification import (
    AggregateResult,
    AuditEntryItem,
    AuditStatsResponse,
    DeviceRegistration,
    DeviceTokenItem,
    SocialDispatchRequest,
    TokenRegistrationResponse,
    TokenSweepResponse,
)
from social_push.notifications.errors import ValidationError
from social_push.notifications.factory import build_notification_service
from social_push.notifications.service import NotificationService
from social_push.utils.time import to_naive_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["social-push"])

notification_service = build_notification_service(settings)


def get_notification_service() -> NotificationService:
    return notification_service


@router.get("/health")
def health(service: NotificationService = Depends(get_notification_service)) -> dict:
    return {"status": "ok", "provider": service.dispatcher.gateway.name}


@router.post("/tokens", response_model=TokenRegistrationResponse)
def register_token(payload: DeviceRegistration, service: NotificationService = Depends(get_notification_service)):
    try:
        return service.register_token(payload.user_id, payload.token, payload.platform)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/tokens/sweep", response_model=TokenSweepResponse)
def sweep_tokens(
    retention_days: int = Query(settings.token_retention_days, ge=0),
    service: NotificationService = Depends(get_notification_service),
):
    removed = service.token_cache.sweep_expired(retention_days)
    return TokenSweepResponse(retention_days=retention_days, removed=removed)


@router.delete("/tokens/{token:path}")
def unregister_token(token: str, service: NotificationService = Depends(get_notification_service)) -> dict:
    try:
        found = service.unregister_token(token)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not found:
        raise HTTPException(status_code=404, detail="Token not found")
    return {"status": "unregistered"}


@router.get("/users/{user_id}/tokens", response_model=list[DeviceTokenItem])
def list_user_tokens(user_id: str, service: NotificationService = Depends(get_notification_service)):
    return [DeviceTokenItem(**asdict(record)) for record in service.active_tokens(user_id)]


@router.post("/notifications/social", response_model=AggregateResult)
async def dispatch_social(
    payload: SocialDispatchRequest,
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.dispatch_social(payload.user_id, payload.notification_type, payload.payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/audit", response_model=list[AuditEntryItem])
def list_audit_entries(
    user_id: str | None = Query(None),
    notification_type: str | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    service: NotificationService = Depends(get_notification_service),
):
    if start is not None or end is not None:
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="start and end must be provided together")
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start > end:
            raise HTTPException(status_code=400, detail="start must not be after end")
        entries = [
            entry
            for entry in reversed(service.audit_sink.in_range(start, end))
            if (user_id is None or entry.user_id == user_id)
            and (notification_type is None or entry.notification_type == notification_type)
        ][:limit]
    else:
        entries = service.audit_sink.recent(user_id=user_id, notification_type=notification_type, limit=limit)
    return [AuditEntryItem(**asdict(entry)) for entry in entries]


@router.get("/audit/stats", response_model=AuditStatsResponse)
def audit_stats(service: NotificationService = Depends(get_notification_service)):
    return AuditStatsResponse(**service.audit_sink.stats())


@router.get("/audit/export")
def export_audit(
    limit: int = Query(1000, ge=1, le=10000),
    service: NotificationService = Depends(get_notification_service),
) -> Response:
    return Response(content=service.audit_sink.export_json(limit=limit), media_type="application/json")


@router.get("/rate-limits/{user_id}")
def rate_limit_counts(user_id: str, service: NotificationService = Depends(get_notification_service)) -> dict:
    try:
        counts = service.rate_limiter.get_counts(user_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"user_id": user_id, "counts": counts, **service.rate_limiter.stats()}


@router.delete("/rate-limits/{user_id}")
def reset_rate_limit(user_id: str, service: NotificationService = Depends(get_notification_service)) -> dict:
    service.rate_limiter.reset(user_id)
    return {"status": "reset", "user_id": user_id}


@router.get("/metrics/error-rate")
def error_rate(service: NotificationService = Depends(get_notification_service)) -> dict:
    return service.dispatcher.error_tracker.stats()
