"""Read side of the weekly schedule: grouping, progress and the lock gate."""
from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import asc
from sqlalchemy.orm import Session

from app.api.schemas.schedule import (
    DaySchedule,
    GroupedSchedule,
    ProgressStats,
    ScheduledTaskItem,
    UserProgress,
)
from app.core.config import settings
from app.core.errors import WeekLockedError
from app.db.models.completion import TaskCompletion
from app.db.models.schedule import ScheduledTask
from app.db.models.task import Task
from app.db.models.user import User
from app.services.week_period import WEEKDAY_NAMES, resolve_period, week_dates


def progress_percent(completed: int, total: int) -> int:
    """Whole-number completion percentage; 0 for an empty week."""
    if total <= 0:
        return 0
    # Halves round up.
    return (200 * completed + total) // (2 * total)


def assert_week_unlocked(week_start: date, now: datetime) -> None:
    """Server-side lock gate: reject writes against a week that is already active."""
    if not settings.enforce_week_lock:
        return
    if resolve_period(now, week_start).is_locked:
        raise WeekLockedError(week_start)


def completion_state_for(status: str, completion: TaskCompletion | None) -> str:
    if status == "completed":
        return "completed"
    if completion is not None and completion.validated_by_leader is not True:
        return "awaiting_validation"
    return "pending"


def render_schedule(db: Session, user_id: UUID, week_start: date, *, now: datetime) -> GroupedSchedule:
    """Group a user's materialized tasks by day (week order) and compute progress."""
    rows: List[Tuple[ScheduledTask, Task]] = (
        db.query(ScheduledTask, Task)
        .join(Task, Task.id == ScheduledTask.task_id)
        .filter(ScheduledTask.user_id == user_id, ScheduledTask.week_start == week_start)
        .order_by(asc(ScheduledTask.scheduled_date), asc(ScheduledTask.scheduled_start))
        .all()
    )
    completions = _completions_by_task(db, user_id, {entry.task_id for entry, _ in rows})

    by_date: Dict[date, List[ScheduledTaskItem]] = {}
    for entry, task in rows:
        by_date.setdefault(entry.scheduled_date, []).append(
            ScheduledTaskItem(
                id=entry.id,
                task_id=entry.task_id,
                title=task.title,
                description=task.description,
                area=task.area,
                estimated_hours=task.estimated_hours,
                scheduled_date=entry.scheduled_date,
                scheduled_start=entry.scheduled_start,
                scheduled_end=entry.scheduled_end,
                is_collaborative=bool(entry.is_collaborative),
                collaborator_user_id=entry.collaborator_user_id,
                status=entry.status,
                completion_state=completion_state_for(entry.status, completions.get(entry.task_id)),
            )
        )

    days = [
        DaySchedule(
            scheduled_date=day,
            day_name=WEEKDAY_NAMES[day.weekday()],
            tasks=by_date.get(day, []),
        )
        for day in week_dates(week_start)
    ]
    # Rows dated outside the week window are still counted so progress matches the store.
    total = len(rows)
    completed = sum(1 for entry, _ in rows if entry.status == "completed")
    state = resolve_period(now, week_start)

    return GroupedSchedule(
        user_id=user_id,
        week_start=week_start,
        period=state.period.value,
        is_locked=state.is_locked,
        days=days,
        completed_count=completed,
        total_count=total,
        progress_percent=progress_percent(completed, total),
    )


def progress_stats(db: Session, week_start: date, organization_id: Optional[UUID] = None) -> ProgressStats:
    """Per-user and overall completion for one week (the global progress view)."""
    query = db.query(ScheduledTask.user_id, ScheduledTask.status).filter(ScheduledTask.week_start == week_start)
    if organization_id is not None:
        query = query.join(User, User.id == ScheduledTask.user_id).filter(User.organization_id == organization_id)

    counts: Dict[UUID, List[int]] = {}
    for user_id, status in query.all():
        bucket = counts.setdefault(user_id, [0, 0])
        bucket[1] += 1
        if status == "completed":
            bucket[0] += 1

    users = [
        UserProgress(
            user_id=user_id,
            completed_count=completed,
            total_count=total,
            progress_percent=progress_percent(completed, total),
        )
        for user_id, (completed, total) in sorted(counts.items(), key=lambda item: str(item[0]))
    ]
    completed_all = sum(item.completed_count for item in users)
    total_all = sum(item.total_count for item in users)
    return ProgressStats(
        week_start=week_start,
        users=users,
        completed_count=completed_all,
        total_count=total_all,
        progress_percent=progress_percent(completed_all, total_all),
    )


def _completions_by_task(db: Session, user_id: UUID, task_ids: Set[UUID]) -> Dict[UUID, TaskCompletion]:
    if not task_ids:
        return {}
    rows = (
        db.query(TaskCompletion)
        .filter(TaskCompletion.user_id == user_id, TaskCompletion.task_id.in_(task_ids))
        .all()
    )
    return {row.task_id: row for row in rows}
