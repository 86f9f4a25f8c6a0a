"""Task completion state machine.

Per (task_id, user_id) a scheduled task is ``pending`` or ``completed``. Collaborative
tasks pass through ``awaiting_validation``: a completion row exists with
``validated_by_leader = False`` while the schedule status stays ``pending`` until a
leader approves it.

The ledger row (task_completions) and the denormalized ``task_schedule.status`` are
always written in the same transaction.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from threading import Lock
from time import perf_counter
from typing import Dict, Iterator, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    InconsistencyError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
    ToggleInFlightError,
)
from app.db.models.activity_log import ActivityLog
from app.db.models.completion import TaskCompletion
from app.db.models.schedule import ScheduledTask
from app.db.models.task import Task
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.schedule_events import ScheduleChanged, ScheduleEventBus, event_bus
from app.services.week_period import require_week_start
from app.services.weekly_schedule import assert_week_unlocked, completion_state_for

logger = logging.getLogger(__name__)

UPDATE_FAILED_MESSAGE = "Could not update task"


@dataclass
class CompletionOutcome:
    task_id: UUID
    user_id: UUID
    week_start: date
    status: str
    completion_state: str
    validated_by_leader: Optional[bool]
    completed_at: Optional[datetime]


@dataclass
class ReconcileResult:
    rows_checked: int
    rows_repaired: int
    mismatches: List[InconsistencyError]


class _InFlightRegistry:
    """Non-blocking per-key guard: a second caller for the same key is refused, not queued."""

    def __init__(self) -> None:
        self._keys: Set[Tuple[UUID, UUID]] = set()
        self._lock = Lock()

    @contextmanager
    def hold(self, task_id: UUID, user_id: UUID) -> Iterator[None]:
        key = (task_id, user_id)
        with self._lock:
            if key in self._keys:
                raise ToggleInFlightError(task_id, user_id)
            self._keys.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._keys.discard(key)


_in_flight = _InFlightRegistry()


def mark_complete(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    week_start: date,
    *,
    now: datetime,
    request_id: str | None = None,
    bus: ScheduleEventBus = event_bus,
) -> CompletionOutcome:
    """Record a completion. Individual tasks self-validate; collaborative ones await a leader."""
    require_week_start(week_start)
    with _in_flight.hold(task_id, user_id):
        entry = _load_entry(db, task_id, user_id, week_start)
        assert_week_unlocked(week_start, now)
        collaborative = bool(entry.is_collaborative)
        new_status = "pending" if collaborative else "completed"

        def apply() -> TaskCompletion:
            completion = _write_ledger(db, entry, now=now, validated=not collaborative)
            _apply_status(entry, new_status)
            _log_transition(
                db,
                entry,
                "task_submitted_for_validation" if collaborative else "task_completed",
                request_id,
            )
            return completion

        completion = _commit_transition(db, entry, "task.complete", apply, request_id)
        outcome = CompletionOutcome(
            task_id=task_id,
            user_id=user_id,
            week_start=week_start,
            status=entry.status,
            completion_state=completion_state_for(entry.status, completion),
            validated_by_leader=completion.validated_by_leader,
            completed_at=completion.completed_at,
        )
    _publish(bus, outcome, now)
    return outcome


def mark_pending(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    week_start: date,
    *,
    now: datetime,
    request_id: str | None = None,
    bus: ScheduleEventBus = event_bus,
) -> CompletionOutcome:
    """Undo a completion: drop the ledger row and force the status back to pending."""
    require_week_start(week_start)
    with _in_flight.hold(task_id, user_id):
        entry = _load_entry(db, task_id, user_id, week_start)
        assert_week_unlocked(week_start, now)

        def apply() -> None:
            (
                db.query(TaskCompletion)
                .filter(TaskCompletion.task_id == task_id, TaskCompletion.user_id == user_id)
                .delete(synchronize_session=False)
            )
            _apply_status(entry, "pending")
            _log_transition(db, entry, "task_uncompleted", request_id)

        _commit_transition(db, entry, "task.uncomplete", apply, request_id)
        outcome = CompletionOutcome(
            task_id=task_id,
            user_id=user_id,
            week_start=week_start,
            status="pending",
            completion_state="pending",
            validated_by_leader=None,
            completed_at=None,
        )
    _publish(bus, outcome, now)
    return outcome


def toggle_completion(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    week_start: date,
    completed: bool,
    *,
    now: datetime,
    request_id: str | None = None,
    bus: ScheduleEventBus = event_bus,
) -> CompletionOutcome:
    if completed:
        return mark_complete(db, task_id, user_id, week_start, now=now, request_id=request_id, bus=bus)
    return mark_pending(db, task_id, user_id, week_start, now=now, request_id=request_id, bus=bus)


def validate_completion(
    db: Session,
    task_id: UUID,
    user_id: UUID,
    leader_id: UUID,
    approved: bool,
    *,
    now: datetime,
    request_id: str | None = None,
    bus: ScheduleEventBus = event_bus,
) -> CompletionOutcome:
    """Leader decision on a collaborative completion submitted by ``user_id``."""
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    if task.leader_id != leader_id:
        raise OwnershipError("Only the task leader can validate this completion")

    with _in_flight.hold(task_id, user_id):
        completion = (
            db.query(TaskCompletion)
            .filter(TaskCompletion.task_id == task_id, TaskCompletion.user_id == user_id)
            .one_or_none()
        )
        if completion is None:
            raise NotFoundError("No completion submitted for this task")
        entries = (
            db.query(ScheduledTask)
            .filter(ScheduledTask.task_id == task_id, ScheduledTask.user_id == user_id)
            .order_by(ScheduledTask.week_start.desc())
            .all()
        )
        if not entries:
            raise NotFoundError("Task is not scheduled for this user")
        new_status = "completed" if approved else "pending"

        def apply() -> None:
            completion.validated_by_leader = approved
            completion.validated_by = leader_id
            completion.validated_at = now
            for entry in entries:
                _apply_status(entry, new_status)
            _log_transition(
                db,
                entries[0],
                "task_validated" if approved else "task_validation_rejected",
                request_id,
                extra={"leader_id": str(leader_id)},
            )

        _commit_transition(db, entries[0], "task.validate", apply, request_id)
        outcome = CompletionOutcome(
            task_id=task_id,
            user_id=user_id,
            week_start=entries[0].week_start,
            status=new_status,
            completion_state=completion_state_for(new_status, completion),
            validated_by_leader=completion.validated_by_leader,
            completed_at=completion.completed_at,
        )
    _publish(bus, outcome, now)
    return outcome


def completion_state(db: Session, task_id: UUID, user_id: UUID, week_start: date) -> str:
    entry = _load_entry(db, task_id, user_id, week_start)
    completion = (
        db.query(TaskCompletion)
        .filter(TaskCompletion.task_id == task_id, TaskCompletion.user_id == user_id)
        .one_or_none()
    )
    return completion_state_for(entry.status, completion)


def expected_status(completion: TaskCompletion | None) -> str:
    """The status the schedule must show for a given ledger row."""
    if completion is not None and completion.validated_by_leader is True:
        return "completed"
    return "pending"


def reconcile_completion_status(db: Session, week_start: date | None = None) -> ReconcileResult:
    """Read-repair: rewrite any schedule status that disagrees with the completion ledger."""
    query = db.query(ScheduledTask)
    if week_start is not None:
        query = query.filter(ScheduledTask.week_start == week_start)
    entries = query.all()

    ledger: Dict[Tuple[UUID, UUID], TaskCompletion] = {}
    if entries:
        task_ids = {entry.task_id for entry in entries}
        for row in db.query(TaskCompletion).filter(TaskCompletion.task_id.in_(task_ids)).all():
            ledger[(row.task_id, row.user_id)] = row

    mismatches: List[InconsistencyError] = []
    with trace("task.reconcile", metadata={"week_start": week_start.isoformat() if week_start else None}):
        for entry in entries:
            expected = expected_status(ledger.get((entry.task_id, entry.user_id)))
            if entry.status != expected:
                mismatches.append(InconsistencyError(entry.task_id, entry.user_id, expected, entry.status))
                entry.status = expected
        if mismatches:
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Could not repair schedule status") from exc

    for mismatch in mismatches:
        logger.warning("Repaired schedule status: %s", mismatch)
    log_metric("task.reconcile.repaired", len(mismatches), metadata={"checked": len(entries)})
    return ReconcileResult(rows_checked=len(entries), rows_repaired=len(mismatches), mismatches=mismatches)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _load_entry(db: Session, task_id: UUID, user_id: UUID, week_start: date) -> ScheduledTask:
    entry = (
        db.query(ScheduledTask)
        .filter(
            ScheduledTask.task_id == task_id,
            ScheduledTask.user_id == user_id,
            ScheduledTask.week_start == week_start,
        )
        .one_or_none()
    )
    if entry is None:
        raise NotFoundError("Task is not scheduled for this user and week")
    return entry


def _write_ledger(db: Session, entry: ScheduledTask, *, now: datetime, validated: bool) -> TaskCompletion:
    completion = (
        db.query(TaskCompletion)
        .filter(TaskCompletion.task_id == entry.task_id, TaskCompletion.user_id == entry.user_id)
        .one_or_none()
    )
    if completion is None:
        task = db.get(Task, entry.task_id)
        completion = TaskCompletion(
            task_id=entry.task_id,
            user_id=entry.user_id,
            organization_id=task.organization_id if task else None,
        )
        db.add(completion)
    completion.completed_by_user = True
    completion.validated_by_leader = validated
    completion.validated_by = None
    completion.validated_at = now if validated else None
    completion.completed_at = now
    db.flush()
    return completion


def _apply_status(entry: ScheduledTask, status: str) -> None:
    entry.status = status


def _log_transition(
    db: Session,
    entry: ScheduledTask,
    action_type: str,
    request_id: str | None,
    extra: Optional[dict] = None,
) -> None:
    payload = {
        "task_id": str(entry.task_id),
        "week_start": entry.week_start.isoformat(),
        "status": entry.status,
        "is_collaborative": bool(entry.is_collaborative),
        "request_id": request_id or "",
    }
    if extra:
        payload.update(extra)
    db.add(
        ActivityLog(
            user_id=entry.user_id,
            action_type=action_type,
            action_payload=payload,
            reason="Task completion state changed",
        )
    )


def _commit_transition(db: Session, entry: ScheduledTask, name: str, apply, request_id: str | None):
    """Run ``apply`` and commit ledger + status together; roll both back on any failure."""
    metadata = {
        "task_id": str(entry.task_id),
        "week_start": entry.week_start.isoformat(),
        "is_collaborative": bool(entry.is_collaborative),
    }
    start = perf_counter()
    try:
        with trace(name, metadata=metadata, user_id=str(entry.user_id), request_id=request_id):
            result = apply()
            db.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        log_metric(f"{name}.conflict", 1, metadata=metadata)
        raise ToggleInFlightError(entry.task_id, entry.user_id) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("%s failed for task %s user %s", name, entry.task_id, entry.user_id)
        log_metric(f"{name}.failed", 1, metadata=metadata)
        raise PersistenceError(UPDATE_FAILED_MESSAGE) from exc
    except Exception:
        db.rollback()
        raise

    log_metric(f"{name}.success", 1, metadata=metadata)
    log_metric(f"{name}.latency_ms", (perf_counter() - start) * 1000, metadata={"task_id": str(entry.task_id)})
    return result


def _publish(bus: ScheduleEventBus, outcome: CompletionOutcome, now: datetime) -> None:
    bus.publish(
        ScheduleChanged(
            user_id=outcome.user_id,
            task_id=outcome.task_id,
            week_start=outcome.week_start,
            status=outcome.status,
            completion_state=outcome.completion_state,
            occurred_at=now,
        )
    )
