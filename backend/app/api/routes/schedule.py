"""Weekly schedule endpoints: view, preview, generation, progress and completion."""
from __future__ import annotations

from datetime import date, datetime
from time import perf_counter
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.errors import to_http_exception
from app.api.schemas.schedule import (
    CompletionOutcomeResponse,
    GenerateSchedulesRequest,
    GenerateSchedulesResponse,
    PreviewResponse,
    PreviewTask,
    ProgressStatsResponse,
    ScheduleResponse,
    TaskToggleRequest,
    TaskValidationRequest,
    WeekReadinessResponse,
)
from app.core.clock import get_now
from app.core.errors import AgendaError
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.generation_trigger import generate_weekly_schedules, get_week_readiness, load_preview
from app.services.task_completion import CompletionOutcome, toggle_completion, validate_completion
from app.services.week_period import active_week_start, current_week_start
from app.services.weekly_schedule import progress_stats, render_schedule

router = APIRouter()


@router.get("/schedule", response_model=ScheduleResponse, tags=["schedule"])
def get_schedule(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    week_start: Optional[date] = Query(default=None, description="Defaults to the live week"),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> ScheduleResponse:
    """Return the user's materialized tasks grouped by day, with progress."""
    request_id = getattr(request.state, "request_id", None)
    target = week_start or active_week_start(now)
    start = perf_counter()
    with trace(
        "schedule.read",
        metadata={"week_start": target.isoformat()},
        user_id=str(user_id),
        request_id=request_id,
    ):
        grouped = render_schedule(db, user_id, target, now=now)

    log_metric(
        "schedule.read.latency_ms",
        (perf_counter() - start) * 1000,
        metadata={"user_id": str(user_id)},
    )
    return ScheduleResponse(**grouped.model_dump(), request_id=request_id or "")


@router.get("/schedule/preview", response_model=PreviewResponse, tags=["schedule"])
def get_schedule_preview(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    week_start: Optional[date] = Query(default=None, description="Defaults to the week being prepared"),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> PreviewResponse:
    request_id = getattr(request.state, "request_id", None)
    target = week_start or current_week_start(now)
    preview = load_preview(db, user_id, target)
    if preview is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preview not found")
    tasks = [PreviewTask(**item) for item in (preview.preview_data or {}).get("tasks", [])]
    return PreviewResponse(
        user_id=user_id,
        week_start=target,
        tasks=tasks,
        generated_at=preview.updated_at or preview.created_at,
        request_id=request_id or "",
    )


@router.post("/schedule/generate", response_model=GenerateSchedulesResponse, tags=["schedule"])
def post_generate_schedules(
    request: Request,
    payload: GenerateSchedulesRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> GenerateSchedulesResponse:
    """Materialize the upcoming week once the team is ready (or immediately with ``force``)."""
    request_id = getattr(request.state, "request_id", None)
    try:
        result = generate_weekly_schedules(
            db,
            now=now,
            organization_id=payload.organization_id,
            force=payload.force,
            request_id=request_id,
        )
    except AgendaError as exc:
        raise to_http_exception(exc) from exc

    log_metric("schedule.generate.status", 1, metadata={"status": result.status})
    return GenerateSchedulesResponse(
        status=result.status,
        week_start=result.week_start,
        period=result.period.value,
        scheduled_count=result.scheduled_count,
        users_scheduled=result.users_scheduled,
        readiness=result.readiness,
        source=result.source,
        request_id=request_id or "",
    )


@router.get("/schedule/readiness", response_model=WeekReadinessResponse, tags=["schedule"])
def get_readiness(
    request: Request,
    week_start: Optional[date] = Query(default=None),
    organization_id: Optional[UUID] = Query(default=None),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> WeekReadinessResponse:
    request_id = getattr(request.state, "request_id", None)
    target = week_start or current_week_start(now)
    readiness = get_week_readiness(db, target, organization_id)
    return WeekReadinessResponse(**readiness.model_dump(), request_id=request_id or "")


@router.get("/schedule/progress", response_model=ProgressStatsResponse, tags=["schedule"])
def get_progress(
    request: Request,
    week_start: Optional[date] = Query(default=None, description="Defaults to the live week"),
    organization_id: Optional[UUID] = Query(default=None),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> ProgressStatsResponse:
    request_id = getattr(request.state, "request_id", None)
    target = week_start or active_week_start(now)
    with trace("schedule.progress", metadata={"week_start": target.isoformat()}, request_id=request_id):
        stats = progress_stats(db, target, organization_id)
    return ProgressStatsResponse(**stats.model_dump(), request_id=request_id or "")


@router.patch("/schedule/tasks/{task_id}", response_model=CompletionOutcomeResponse, tags=["schedule"])
def patch_task_completion(
    task_id: UUID,
    request: Request,
    payload: TaskToggleRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> CompletionOutcomeResponse:
    """Toggle a scheduled task between pending and completed."""
    request_id = getattr(request.state, "request_id", None)
    try:
        outcome = toggle_completion(
            db,
            task_id,
            payload.user_id,
            payload.week_start,
            payload.completed,
            now=now,
            request_id=request_id,
        )
    except AgendaError as exc:
        log_metric("schedule.toggle.rejected", 1, metadata={"error": type(exc).__name__})
        raise to_http_exception(exc) from exc
    return _outcome_response(outcome, request_id)


@router.post(
    "/schedule/tasks/{task_id}/validation",
    response_model=CompletionOutcomeResponse,
    tags=["schedule"],
)
def post_task_validation(
    task_id: UUID,
    request: Request,
    payload: TaskValidationRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> CompletionOutcomeResponse:
    """Leader approval or rejection of a collaborative completion."""
    request_id = getattr(request.state, "request_id", None)
    try:
        outcome = validate_completion(
            db,
            task_id,
            payload.user_id,
            payload.leader_id,
            payload.approved,
            now=now,
            request_id=request_id,
        )
    except AgendaError as exc:
        raise to_http_exception(exc) from exc
    return _outcome_response(outcome, request_id)


def _outcome_response(outcome: CompletionOutcome, request_id: str | None) -> CompletionOutcomeResponse:
    return CompletionOutcomeResponse(
        task_id=outcome.task_id,
        user_id=outcome.user_id,
        week_start=outcome.week_start,
        status=outcome.status,
        completion_state=outcome.completion_state,
        validated_by_leader=outcome.validated_by_leader,
        completed_at=outcome.completed_at,
        request_id=request_id or "",
    )
