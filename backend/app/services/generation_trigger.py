"""Schedule preview and weekly generation entry points."""
from __future__ import annotations

import logging
import time as time_module
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from time import perf_counter
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.schemas.schedule import WeekReadiness
from app.core.config import settings
from app.core.context import bind_request_id, reset_request_id
from app.core.errors import NotFoundError, PersistenceError
from app.db.models.activity_log import ActivityLog
from app.db.models.completion import TaskCompletion
from app.db.models.schedule import WeeklySchedulePreview
from app.db.models.task import Task
from app.db.models.user import User
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.availability_store import day_windows, get_availability, list_week_availability
from app.services.notifications.hooks import notify_availability_pending, notify_schedule_generated
from app.services.schedule_materializer import materialize_week
from app.services.week_period import WEEKDAY_NAMES, Period, resolve_period, week_dates

logger = logging.getLogger(__name__)

# The preview only fills the working days of the week.
PREVIEW_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


@dataclass
class GenerationResult:
    status: str
    week_start: date
    period: Period
    scheduled_count: int = 0
    users_scheduled: int = 0
    readiness: Optional[WeekReadiness] = None
    source: Optional[str] = None


def get_week_readiness(db: Session, week_start: date, organization_id: Optional[UUID] = None) -> WeekReadiness:
    """Who has (and has not) submitted availability for the week."""
    users_query = db.query(User.id)
    if organization_id is not None:
        users_query = users_query.filter(User.organization_id == organization_id)
    member_ids = [row[0] for row in users_query.order_by(User.created_at).all()]
    ready_ids = {record.user_id for record in list_week_availability(db, week_start)}
    pending = [uid for uid in member_ids if uid not in ready_ids]
    ready_count = len(member_ids) - len(pending)
    return WeekReadiness(
        week_start=week_start,
        ready_count=ready_count,
        total_users=len(member_ids),
        pending_user_ids=pending,
        all_users_ready=bool(member_ids) and not pending,
    )


def generate_preview(db: Session, user_id: UUID, week_start: date) -> WeeklySchedulePreview:
    """
    Build a quick, non-binding placement of the user's next tasks.

    Walks Monday to Friday of the week; each available day receives the next task, starting
    at the day's window start and lasting ``preview_block_hours``.
    """
    availability = get_availability(db, user_id, week_start)
    if availability is None:
        raise NotFoundError("User has no availability for this week")

    tasks = (
        db.query(Task)
        .filter(Task.user_id == user_id)
        .order_by(Task.phase, Task.order_index, Task.created_at)
        .limit(settings.preview_max_tasks)
        .all()
    )
    windows = day_windows(availability)
    day_dates = {WEEKDAY_NAMES[day.weekday()]: day for day in week_dates(week_start)}

    preview_tasks: List[dict] = []
    queue = list(tasks)
    for day in PREVIEW_DAYS:
        if not queue:
            break
        window = windows[day]
        if not window.available or window.start is None:
            continue
        task = queue.pop(0)
        start_at = datetime.combine(day_dates[day], window.start)
        end_at = start_at + timedelta(hours=settings.preview_block_hours)
        if window.end is not None:
            end_at = min(end_at, datetime.combine(day_dates[day], window.end))
        preview_tasks.append(
            {
                "task_id": str(task.id),
                "task_title": task.title,
                "scheduled_date": day_dates[day].isoformat(),
                "scheduled_start": start_at.time().strftime("%H:%M"),
                "scheduled_end": end_at.time().strftime("%H:%M"),
                "is_preview": True,
            }
        )

    preview = (
        db.query(WeeklySchedulePreview)
        .filter(WeeklySchedulePreview.user_id == user_id, WeeklySchedulePreview.week_start == week_start)
        .one_or_none()
    )
    if preview is None:
        preview = WeeklySchedulePreview(user_id=user_id, week_start=week_start)
        db.add(preview)
    preview.preview_data = {"tasks": preview_tasks}
    preview.priority_order = time_module.time_ns() // 1_000_000
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not store schedule preview") from exc
    db.refresh(preview)
    return preview


def load_preview(db: Session, user_id: UUID, week_start: date) -> WeeklySchedulePreview | None:
    return (
        db.query(WeeklySchedulePreview)
        .filter(WeeklySchedulePreview.user_id == user_id, WeeklySchedulePreview.week_start == week_start)
        .one_or_none()
    )


def run_preview_generation(
    user_id: UUID,
    week_start: date,
    session_factory: Callable[[], Session],
    request_id: str | None = None,
) -> bool:
    """Detached preview generation. Never raises; failures are logged and counted."""
    token = bind_request_id(request_id)
    session: Session | None = None
    start = perf_counter()
    try:
        session = session_factory()
        with trace(
            "generation.preview",
            metadata={"week_start": week_start.isoformat()},
            user_id=str(user_id),
            request_id=request_id,
        ):
            preview = generate_preview(session, user_id, week_start)
        count = len((preview.preview_data or {}).get("tasks", []))
        logger.info("Preview generated for user %s week %s (%s tasks)", user_id, week_start, count)
        log_metric("generation.preview.success", 1, metadata={"user_id": str(user_id), "tasks": count})
        return True
    except Exception:
        logger.exception("Preview generation failed for user %s week %s", user_id, week_start)
        log_metric("generation.preview.failed", 1, metadata={"user_id": str(user_id)})
        return False
    finally:
        log_metric("generation.preview.latency_ms", (perf_counter() - start) * 1000)
        if session is not None:
            session.close()
        reset_request_id(token)


def generate_weekly_schedules(
    db: Session,
    *,
    now: datetime,
    organization_id: Optional[UUID] = None,
    force: bool = False,
    request_id: str | None = None,
) -> GenerationResult:
    """
    Materialize the team schedule for the week being prepared.

    Runs only during the reviewing period and once every member has submitted
    availability, unless ``force`` is set.
    """
    state = resolve_period(now)
    week_start = state.week_start
    metadata = {
        "week_start": week_start.isoformat(),
        "period": state.period.value,
        "organization_id": str(organization_id) if organization_id else None,
        "force": force,
    }

    with trace("generation.weekly_schedules", metadata=metadata, request_id=request_id):
        if state.period is not Period.REVIEWING and not force:
            logger.info("Skipping schedule generation for %s: period is %s", week_start, state.period.value)
            return GenerationResult(status="outside_window", week_start=week_start, period=state.period)

        readiness = get_week_readiness(db, week_start, organization_id)
        if not readiness.all_users_ready and not force:
            pending = set(readiness.pending_user_ids)
            waiting = [
                record.user_id
                for record in list_week_availability(db, week_start)
                if record.user_id not in pending
                and (organization_id is None or _in_organization(db, record.user_id, organization_id))
            ]
            notify_availability_pending(
                db,
                waiting_user_ids=waiting,
                pending_user_ids=readiness.pending_user_ids,
                week_start=week_start.isoformat(),
                request_id=request_id,
            )
            logger.info(
                "Waiting on availability for %s: %s/%s ready",
                week_start,
                readiness.ready_count,
                readiness.total_users,
            )
            return GenerationResult(
                status="waiting",
                week_start=week_start,
                period=state.period,
                readiness=readiness,
            )

        availabilities = [
            record
            for record in list_week_availability(db, week_start)
            if organization_id is None or _in_organization(db, record.user_id, organization_id)
        ]
        if not availabilities:
            return GenerationResult(
                status="no_availability",
                week_start=week_start,
                period=state.period,
                readiness=readiness,
            )

        tasks = _open_tasks(db, [record.user_id for record in availabilities])
        result = materialize_week(db, week_start, availabilities, tasks, request_id=request_id)

    per_user: dict[UUID, int] = {}
    for row in result.rows:
        per_user[row.user_id] = per_user.get(row.user_id, 0) + 1
    for record in availabilities:
        log = ActivityLog(
            user_id=record.user_id,
            action_type="weekly_schedule_generated",
            action_payload={
                "week_start": week_start.isoformat(),
                "task_count": per_user.get(record.user_id, 0),
                "source": result.source,
                "forced": force,
                "request_id": request_id or "",
            },
            reason="Weekly schedule materialized",
        )
        db.add(log)
        db.commit()
        db.refresh(log)
        notify_schedule_generated(db, log, request_id)

    log_metric(
        "generation.weekly_schedules.placed",
        len(result.rows),
        metadata={"week_start": week_start.isoformat(), "source": result.source},
    )
    return GenerationResult(
        status="generated",
        week_start=week_start,
        period=state.period,
        scheduled_count=len(result.rows),
        users_scheduled=len(per_user),
        readiness=readiness,
        source=result.source,
    )


def _in_organization(db: Session, user_id: UUID, organization_id: UUID) -> bool:
    user = db.get(User, user_id)
    return bool(user and user.organization_id == organization_id)


def _open_tasks(db: Session, user_ids: List[UUID]) -> List[Task]:
    """Tasks owned by ``user_ids`` without a leader-validated completion, in phase order."""
    if not user_ids:
        return []
    done = {
        (task_id, user_id)
        for task_id, user_id in db.query(TaskCompletion.task_id, TaskCompletion.user_id)
        .filter(TaskCompletion.user_id.in_(user_ids), TaskCompletion.validated_by_leader.is_(True))
        .all()
    }
    tasks = (
        db.query(Task)
        .filter(Task.user_id.in_(user_ids))
        .order_by(Task.phase, Task.order_index, Task.created_at)
        .all()
    )
    return [task for task in tasks if (task.id, task.user_id) not in done]
