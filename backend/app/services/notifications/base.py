"""Notification service interface."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List
from uuid import UUID


@dataclass
class NotificationResult:
    status: str
    reason: str


class NotificationService:
    """Base interface for notification providers."""

    def notify_schedule_ready(
        self,
        *,
        user_id: UUID,
        week_start: str,
        task_count: int,
        request_id: str | None,
    ) -> NotificationResult:
        raise NotImplementedError

    def notify_availability_pending(
        self,
        *,
        user_id: UUID,
        week_start: str,
        pending_user_ids: List[UUID],
        request_id: str | None,
    ) -> NotificationResult:
        raise NotImplementedError
