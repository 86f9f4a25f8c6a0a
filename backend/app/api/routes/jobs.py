"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

from datetime import datetime
from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.errors import to_http_exception
from app.api.schemas.jobs import JobRunRequest, JobRunResponse
from app.core.clock import get_now
from app.core.config import settings
from app.core.errors import AgendaError
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.job_runner import run_reconcile_job, run_weekly_schedules_job
from app.worker.scheduler_main import generation_trigger_time

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        day_of_week, hour, minute = generation_trigger_time()
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduling_timezone,
                "weekly_schedules": {"day_of_week": day_of_week, "time": f"{hour:02d}:{minute:02d}"},
                "reconcile": {"time": f"{settings.reconcile_job_hour:02d}:00"},
            },
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(
    request: Request,
    payload: JobRunRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    request_id = getattr(request.state, "request_id", None)
    metadata = {"job": payload.job, "request_id": request_id}
    start = perf_counter()
    try:
        with trace("jobs.run_now", metadata=metadata, request_id=request_id):
            if payload.job == "weekly_schedules":
                result = run_weekly_schedules_job(
                    db,
                    now=now,
                    organization_id=payload.organization_id,
                    force=payload.force,
                    request_id=request_id,
                )
            else:
                result = run_reconcile_job(db, now=now)
    except AgendaError as exc:
        raise to_http_exception(exc) from exc

    latency_ms = (perf_counter() - start) * 1000
    log_metric("jobs.run_now.success", 1, metadata={"job": payload.job})
    log_metric("jobs.run_now.latency_ms", latency_ms, metadata={"job": payload.job})

    return JobRunResponse(
        job=payload.job,
        status=result.status,
        items_processed=result.items_processed,
        items_changed=result.items_changed,
        request_id=request_id or "",
    )
