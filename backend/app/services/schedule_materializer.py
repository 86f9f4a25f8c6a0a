"""Turn weekly availability and open tasks into concrete schedule rows.

An LLM is asked for placements first; anything it returns is checked against each
user's availability. When no API key is configured, or the call or its output is
unusable, a deterministic packer places the tasks instead.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import openai
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import PersistenceError
from app.db.models.availability import WeeklyAvailability
from app.db.models.completion import TaskCompletion
from app.db.models.schedule import ScheduledTask
from app.db.models.task import Task
from app.observability.tracing import trace
from app.services.availability_store import DayAvailability, day_windows
from app.services.week_period import WEEKDAY_NAMES, week_dates

logger = logging.getLogger(__name__)

# Earliest start per time-of-day preference; the availability window still bounds it.
_TIME_OF_DAY_ANCHORS = {
    "morning": time(hour=8, minute=0),
    "afternoon": time(hour=13, minute=0),
    "evening": time(hour=17, minute=0),
}
DEFAULT_TASK_MINUTES = 60
SLOT_GRANULARITY_MINUTES = 30


class PlacementPayload(BaseModel):
    task_id: UUID
    user_id: UUID
    scheduled_date: date
    scheduled_start: time
    scheduled_end: time
    is_collaborative: bool = False
    collaborator_user_id: Optional[UUID] = None


class SchedulePayload(BaseModel):
    scheduled_tasks: List[PlacementPayload]


@dataclass
class MaterializeResult:
    rows: List[ScheduledTask]
    source: str


def materialize_week(
    db: Session,
    week_start: date,
    availabilities: Sequence[WeeklyAvailability],
    tasks: Sequence[Task],
    *,
    request_id: str | None = None,
) -> MaterializeResult:
    """Replace the week's schedule rows for every user in ``availabilities``. Commits."""
    by_user = {record.user_id: record for record in availabilities}
    user_tasks: Dict[UUID, List[Task]] = {}
    for task in tasks:
        if task.user_id in by_user:
            user_tasks.setdefault(task.user_id, []).append(task)

    with trace(
        "schedule.materialize",
        metadata={"week_start": week_start.isoformat(), "users": len(by_user), "tasks": len(tasks)},
        request_id=request_id,
    ) as materialize_trace:
        placements = _request_placements_from_llm(week_start, by_user, user_tasks)
        source = "llm"
        if placements is not None:
            placements = _filter_valid_placements(placements, week_start, by_user, user_tasks)
        if not placements:
            placements = _pack_deterministically(week_start, by_user, user_tasks)
            source = "fallback"
        if materialize_trace:
            materialize_trace.update(metadata={"placements": len(placements), "source": source})

    rows = _replace_week_rows(db, week_start, list(by_user), placements)
    return MaterializeResult(rows=rows, source=source)


def task_is_collaborative(task: Task) -> bool:
    return task.leader_id is not None and task.leader_id != task.user_id


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(hour=total // 60, minute=total % 60)


def _task_minutes(task: Task) -> int:
    if not task.estimated_hours or task.estimated_hours <= 0:
        return DEFAULT_TASK_MINUTES
    raw = int(round(task.estimated_hours * 60))
    # Round up to the slot grid so blocks line up with the questionnaire's half hours.
    return max(SLOT_GRANULARITY_MINUTES, -(-raw // SLOT_GRANULARITY_MINUTES) * SLOT_GRANULARITY_MINUTES)


def _day_anchor(window: DayAvailability, preference: str) -> int:
    start = _minutes(window.start)
    anchor = _TIME_OF_DAY_ANCHORS.get(preference)
    if anchor is None:
        return start
    candidate = max(start, _minutes(anchor))
    return candidate if candidate < _minutes(window.end) else start


def _pack_deterministically(
    week_start: date,
    by_user: Dict[UUID, WeeklyAvailability],
    user_tasks: Dict[UUID, List[Task]],
) -> List[PlacementPayload]:
    """Fill each available day in week order, respecting the daily hour budget."""
    placements: List[PlacementPayload] = []
    for user_id, record in by_user.items():
        queue = list(user_tasks.get(user_id, []))
        if not queue:
            continue
        windows = day_windows(record)
        budget = (record.preferred_hours_per_day or 4) * 60
        for day in week_dates(week_start):
            window = windows[WEEKDAY_NAMES[day.weekday()]]
            if not window.available or window.start is None or window.end is None:
                continue
            cursor = _day_anchor(window, record.preferred_time_of_day or "flexible")
            end = _minutes(window.end)
            used = 0
            while queue:
                duration = _task_minutes(queue[0])
                if cursor + duration > end or used + duration > budget:
                    break
                task = queue.pop(0)
                collaborative = task_is_collaborative(task)
                placements.append(
                    PlacementPayload(
                        task_id=task.id,
                        user_id=user_id,
                        scheduled_date=day,
                        scheduled_start=_from_minutes(cursor),
                        scheduled_end=_from_minutes(cursor + duration),
                        is_collaborative=collaborative,
                        collaborator_user_id=task.leader_id if collaborative else None,
                    )
                )
                cursor += duration
                used += duration
            if not queue:
                break
        if queue:
            logger.info("%s task(s) for user %s did not fit week %s", len(queue), user_id, week_start)
    return placements


def _filter_valid_placements(
    placements: List[PlacementPayload],
    week_start: date,
    by_user: Dict[UUID, WeeklyAvailability],
    user_tasks: Dict[UUID, List[Task]],
) -> List[PlacementPayload]:
    """Drop placements for unknown tasks, outside the week or outside the user's window."""
    days = set(week_dates(week_start))
    known = {(task.id, user_id) for user_id, items in user_tasks.items() for task in items}
    seen: set[Tuple[UUID, UUID]] = set()
    valid: List[PlacementPayload] = []
    for item in placements:
        key = (item.task_id, item.user_id)
        if key not in known or key in seen or item.scheduled_date not in days:
            continue
        window = day_windows(by_user[item.user_id])[WEEKDAY_NAMES[item.scheduled_date.weekday()]]
        if not window.available or window.start is None or window.end is None:
            continue
        if not (window.start <= item.scheduled_start < item.scheduled_end <= window.end):
            continue
        seen.add(key)
        valid.append(item)
    dropped = len(placements) - len(valid)
    if dropped:
        logger.warning("Discarded %s invalid LLM placement(s) for week %s", dropped, week_start)
    return valid


def _request_placements_from_llm(
    week_start: date,
    by_user: Dict[UUID, WeeklyAvailability],
    user_tasks: Dict[UUID, List[Task]],
) -> Optional[List[PlacementPayload]]:
    """Ask the model for placements. Returns None when unavailable or unusable."""
    api_key = settings.openai_api_key
    if not api_key or not user_tasks:
        return None

    users_json = [
        {
            "user_id": str(user_id),
            "preferred_hours_per_day": record.preferred_hours_per_day,
            "preferred_time_of_day": record.preferred_time_of_day,
            "availability": {
                day: {
                    "available": window.available,
                    "start": window.start.strftime("%H:%M") if window.start else "",
                    "end": window.end.strftime("%H:%M") if window.end else "",
                }
                for day, window in day_windows(record).items()
            },
        }
        for user_id, record in by_user.items()
    ]
    tasks_json = [
        {
            "task_id": str(task.id),
            "user_id": str(task.user_id),
            "title": task.title,
            "area": task.area,
            "estimated_hours": task.estimated_hours,
            "leader_id": str(task.leader_id) if task.leader_id else None,
        }
        for items in user_tasks.values()
        for task in items
    ]
    system_prompt = (
        "You coordinate a team's weekly agenda. Place every task inside its owner's available "
        "window, never exceed the owner's preferred hours per day, and honour the preferred time "
        "of day when possible. A task whose leader differs from its owner is collaborative."
    )
    user_prompt = (
        f"Week starts {week_start.isoformat()} ({WEEKDAY_NAMES[week_start.weekday()]}) and runs 7 days.\n"
        f"Users JSON: {json.dumps(users_json)}\n"
        f"Tasks JSON: {json.dumps(tasks_json)}\n"
        "Return a JSON object with key 'scheduled_tasks': a list of objects with 'task_id', 'user_id', "
        "'scheduled_date' (YYYY-MM-DD), 'scheduled_start' and 'scheduled_end' (HH:MM), "
        "'is_collaborative' (boolean) and optional 'collaborator_user_id'."
    )

    client = openai.OpenAI(api_key=api_key, timeout=settings.llm_timeout_seconds)
    try:
        completion = client.chat.completions.create(
            model=settings.openai_model,
            response_format={"type": "json_object"},
            temperature=0.2,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        content = completion.choices[0].message.content or "{}"
        return SchedulePayload.model_validate(json.loads(content)).scheduled_tasks
    except (openai.OpenAIError, json.JSONDecodeError, ValidationError, IndexError) as exc:
        logger.warning("LLM schedule generation failed for week %s, using fallback: %s", week_start, exc)
        return None


def _replace_week_rows(
    db: Session,
    week_start: date,
    user_ids: List[UUID],
    placements: List[PlacementPayload],
) -> List[ScheduledTask]:
    """Swap the week's rows for ``user_ids`` in one transaction, keeping status in step with the ledger."""
    if user_ids:
        (
            db.query(ScheduledTask)
            .filter(ScheduledTask.week_start == week_start, ScheduledTask.user_id.in_(user_ids))
            .delete(synchronize_session=False)
        )
    validated = set()
    if placements:
        rows = (
            db.query(TaskCompletion.task_id, TaskCompletion.user_id)
            .filter(
                TaskCompletion.task_id.in_({item.task_id for item in placements}),
                TaskCompletion.validated_by_leader.is_(True),
            )
            .all()
        )
        validated = {(task_id, user_id) for task_id, user_id in rows}

    created: List[ScheduledTask] = []
    for item in placements:
        row = ScheduledTask(
            task_id=item.task_id,
            user_id=item.user_id,
            week_start=week_start,
            scheduled_date=item.scheduled_date,
            scheduled_start=item.scheduled_start,
            scheduled_end=item.scheduled_end,
            is_collaborative=item.is_collaborative,
            collaborator_user_id=item.collaborator_user_id,
            status="completed" if (item.task_id, item.user_id) in validated else "pending",
        )
        db.add(row)
        created.append(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not store the weekly schedule") from exc
    return created

