"""Weekly cycle period endpoint."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.schemas.period import PeriodResponse
from app.core.clock import get_now
from app.observability.tracing import trace
from app.services.week_period import active_week_start, resolve_period

router = APIRouter()


@router.get("/agenda/period", response_model=PeriodResponse, tags=["agenda"])
def get_period(
    request: Request,
    at: Optional[datetime] = Query(default=None, description="Instant to resolve; defaults to now"),
    now: datetime = Depends(get_now),
) -> PeriodResponse:
    """Report which period of the weekly cycle an instant falls in."""
    request_id = getattr(request.state, "request_id", None)
    instant = at or now
    with trace("agenda.period", metadata={"at": instant.isoformat()}, request_id=request_id):
        state = resolve_period(instant)
    return PeriodResponse(
        period=state.period.value,
        week_start=state.week_start,
        active_week_start=active_week_start(instant),
        opens_at=state.opens_at,
        review_at=state.review_at,
        locks_at=state.locks_at,
        is_locked=state.is_locked,
        request_id=request_id or "",
    )
