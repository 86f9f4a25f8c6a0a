"""No-op notification provider (logs only)."""
from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from app.services.notifications.base import NotificationResult, NotificationService


logger = logging.getLogger(__name__)


class NoopNotificationService(NotificationService):
    def notify_schedule_ready(
        self,
        *,
        user_id: UUID,
        week_start: str,
        task_count: int,
        request_id: str | None,
    ) -> NotificationResult:
        logger.info(
            "Notification queued (noop) schedule_ready user=%s week=%s tasks=%s",
            user_id,
            week_start,
            task_count,
        )
        return NotificationResult(status="noop", reason="notification provider is noop")

    def notify_availability_pending(
        self,
        *,
        user_id: UUID,
        week_start: str,
        pending_user_ids: List[UUID],
        request_id: str | None,
    ) -> NotificationResult:
        logger.info(
            "Notification queued (noop) availability_pending user=%s week=%s pending=%s",
            user_id,
            week_start,
            len(pending_user_ids),
        )
        return NotificationResult(status="noop", reason="notification provider is noop")
