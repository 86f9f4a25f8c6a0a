"""Weekly availability endpoints."""
from __future__ import annotations

from datetime import date, datetime
from time import perf_counter
from typing import Callable, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.errors import to_http_exception
from app.api.schemas.availability import (
    AvailabilityExistsResponse,
    AvailabilityResponse,
    AvailabilitySubmitRequest,
    AvailabilitySubmitResponse,
    DayAvailabilityView,
)
from app.core.clock import get_now
from app.core.errors import AgendaError
from app.db.deps import get_db, get_session_factory
from app.db.models.user import User
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.availability_flow import submit_availability
from app.services.availability_store import DayAvailability, day_windows, get_availability, has_availability
from app.services.generation_trigger import run_preview_generation
from app.services.week_period import current_week_start

router = APIRouter()


@router.get("/availability", response_model=AvailabilityResponse, tags=["availability"])
def read_availability(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    week_start: Optional[date] = Query(default=None, description="Defaults to the week being prepared"),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> AvailabilityResponse:
    request_id = getattr(request.state, "request_id", None)
    target = week_start or current_week_start(now)
    with trace(
        "availability.read",
        metadata={"week_start": target.isoformat()},
        user_id=str(user_id),
        request_id=request_id,
    ):
        record = get_availability(db, user_id, target)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Availability not found")

    return AvailabilityResponse(
        user_id=user_id,
        week_start=target,
        days={
            day: DayAvailabilityView(available=window.available, start=window.start, end=window.end)
            for day, window in day_windows(record).items()
        },
        preferred_hours_per_day=record.preferred_hours_per_day,
        preferred_time_of_day=record.preferred_time_of_day,
        submitted_at=record.submitted_at,
        request_id=request_id or "",
    )


@router.get("/availability/exists", response_model=AvailabilityExistsResponse, tags=["availability"])
def availability_exists(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    week_start: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> AvailabilityExistsResponse:
    request_id = getattr(request.state, "request_id", None)
    target = week_start or current_week_start(now)
    return AvailabilityExistsResponse(
        user_id=user_id,
        week_start=target,
        has_availability=has_availability(db, user_id, target),
        request_id=request_id or "",
    )


@router.put("/availability", response_model=AvailabilitySubmitResponse, tags=["availability"])
def put_availability(
    request: Request,
    payload: AvailabilitySubmitRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> AvailabilitySubmitResponse:
    """Save the questionnaire and queue a schedule preview once the response is sent."""
    request_id = getattr(request.state, "request_id", None)
    if db.get(User, payload.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    def dispatch(user_id: UUID, week_start: date) -> None:
        background_tasks.add_task(run_preview_generation, user_id, week_start, session_factory, request_id)

    per_day = {
        day: DayAvailability(available=window.available, start=window.start, end=window.end)
        for day, window in payload.days.items()
    }
    start = perf_counter()
    try:
        submission = submit_availability(
            db,
            user_id=payload.user_id,
            week_start=payload.week_start,
            per_day=per_day,
            hours_per_day=payload.preferred_hours_per_day,
            preferred_time=payload.preferred_time_of_day,
            now=now,
            dispatch_generation=dispatch,
            request_id=request_id,
        )
    except AgendaError as exc:
        log_metric("availability.put.rejected", 1, metadata={"error": type(exc).__name__})
        raise to_http_exception(exc) from exc

    log_metric("availability.put.latency_ms", (perf_counter() - start) * 1000)
    return AvailabilitySubmitResponse(
        user_id=submission.user_id,
        week_start=submission.week_start,
        availability_id=submission.availability_id,
        available_days=submission.available_days,
        generation_queued=submission.generation_dispatched,
        request_id=request_id or "",
    )
