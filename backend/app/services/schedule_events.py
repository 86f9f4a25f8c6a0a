"""In-process fan-out of schedule changes to interested read models.

The weekly task list and progress stats are computed on every read, so the API's
listener only records which views changed. Caching layers subscribe here too.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from threading import Lock
from typing import Callable, List, Tuple
from uuid import UUID

from app.observability.metrics import log_metric

logger = logging.getLogger(__name__)

WEEKLY_TASKS_VIEW = "weekly_tasks"
PROGRESS_STATS_VIEW = "progress_stats"
DEFAULT_VIEWS: Tuple[str, ...] = (WEEKLY_TASKS_VIEW, PROGRESS_STATS_VIEW)


@dataclass(frozen=True)
class ScheduleChanged:
    user_id: UUID
    task_id: UUID
    week_start: date
    status: str
    completion_state: str
    occurred_at: datetime
    views: Tuple[str, ...] = field(default=DEFAULT_VIEWS)


Listener = Callable[[ScheduleChanged], None]


class ScheduleEventBus:
    """Synchronous publish/subscribe. Listener errors are logged and never reach the publisher."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ScheduleChanged) -> int:
        """Deliver ``event`` to every listener; return how many handled it without error."""
        with self._lock:
            listeners = list(self._listeners)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Schedule listener %r failed for task %s user %s",
                    listener,
                    event.task_id,
                    event.user_id,
                )
        return delivered


def record_view_invalidation(event: ScheduleChanged) -> None:
    logger.info(
        "Schedule views %s changed for user %s week %s (task %s is %s)",
        ", ".join(event.views),
        event.user_id,
        event.week_start,
        event.task_id,
        event.completion_state,
    )
    for view in event.views:
        log_metric("schedule.view.invalidated", 1, metadata={"view": view, "week_start": event.week_start.isoformat()})


event_bus = ScheduleEventBus()
