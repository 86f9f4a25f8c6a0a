"""Notification hook utilities."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Iterable, List
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models.activity_log import ActivityLog
from app.services.notifications.base import NotificationResult
from app.services.notifications.factory import get_notification_service
from app.observability.metrics import log_metric
from app.observability.tracing import trace


logger = logging.getLogger(__name__)


def notify_schedule_generated(db: Session, log: ActivityLog, request_id: str | None) -> None:
    """Tell a user their schedule for the week has been materialized."""
    payload = log.action_payload or {}
    week_start = payload.get("week_start") or ""
    task_count = int(payload.get("task_count") or 0)
    extra = {"week_start": week_start, "task_count": task_count, "source_log_id": str(log.id)}

    if not settings.notifications_enabled:
        _record_notification_log(
            db,
            log.user_id,
            "schedule_ready",
            result=NotificationResult(status="skipped", reason="notifications disabled"),
            request_id=request_id,
            extra=extra,
        )
        return

    service = get_notification_service()
    start = perf_counter()
    try:
        with trace(
            "notifications.schedule_ready",
            metadata={"provider": settings.notifications_provider, **extra},
            user_id=str(log.user_id),
            request_id=request_id,
        ):
            result = service.notify_schedule_ready(
                user_id=log.user_id,
                week_start=week_start,
                task_count=task_count,
                request_id=request_id,
            )
    except Exception:
        logger.exception("Schedule-ready notification failed for user %s", log.user_id)
        result = NotificationResult(status="failed", reason="provider error")
    _record_dispatch_metrics("schedule_ready", start)
    _record_notification_log(db, log.user_id, "schedule_ready", result=result, request_id=request_id, extra=extra)


def notify_availability_pending(
    db: Session,
    *,
    waiting_user_ids: Iterable[UUID],
    pending_user_ids: List[UUID],
    week_start: str,
    request_id: str | None,
) -> int:
    """Alert users who already submitted that the team schedule waits on others.

    Returns how many users were notified (skips included in the activity log, not the count).
    """
    pending = list(pending_user_ids)
    extra = {"week_start": week_start, "pending_user_ids": [str(uid) for uid in pending]}
    sent = 0
    for user_id in waiting_user_ids:
        if not settings.notifications_enabled:
            _record_notification_log(
                db,
                user_id,
                "availability_pending",
                result=NotificationResult(status="skipped", reason="notifications disabled"),
                request_id=request_id,
                extra=extra,
            )
            continue
        service = get_notification_service()
        start = perf_counter()
        try:
            with trace(
                "notifications.availability_pending",
                metadata={"provider": settings.notifications_provider, "pending": len(pending)},
                user_id=str(user_id),
                request_id=request_id,
            ):
                result = service.notify_availability_pending(
                    user_id=user_id,
                    week_start=week_start,
                    pending_user_ids=pending,
                    request_id=request_id,
                )
        except Exception:
            logger.exception("Availability-pending notification failed for user %s", user_id)
            result = NotificationResult(status="failed", reason="provider error")
        else:
            sent += 1
        _record_dispatch_metrics("availability_pending", start)
        _record_notification_log(
            db,
            user_id,
            "availability_pending",
            result=result,
            request_id=request_id,
            extra=extra,
        )
    return sent


def _record_dispatch_metrics(job_name: str, start: float) -> None:
    duration_ms = (perf_counter() - start) * 1000
    log_metric("notifications.sent", 1, metadata={"job": job_name, "provider": settings.notifications_provider})
    log_metric("notifications.duration_ms", duration_ms, metadata={"job": job_name})


def _record_notification_log(
    db: Session,
    user_id: UUID,
    job_name: str,
    *,
    result: NotificationResult,
    request_id: str | None,
    extra: dict,
) -> None:
    if result.status == "skipped":
        log_metric("notifications.skipped", 1, metadata={"job": job_name})
    payload = {
        "provider": settings.notifications_provider,
        "result": result.__dict__,
        "extras": extra,
        "request_id": request_id or "",
    }
    db.add(
        ActivityLog(
            user_id=user_id,
            action_type=f"notification_{job_name}",
            action_payload=payload,
            reason="Notification dispatched" if result.status != "skipped" else "Notification skipped",
        )
    )
    db.commit()
