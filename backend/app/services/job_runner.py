"""Batch job runners for weekly schedule generation and status reconciliation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models.organization import Organization
from app.services.generation_trigger import generate_weekly_schedules
from app.services.task_completion import reconcile_completion_status
from app.services.week_period import active_week_start, current_week_start


logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    status: str
    items_processed: int
    items_changed: int


def _organization_ids(db: Session) -> List[Optional[UUID]]:
    rows = db.query(Organization.id).order_by(Organization.created_at).all()
    # Deployments without organizations schedule everyone as one team.
    return [row[0] for row in rows] or [None]


def run_weekly_schedules_job(
    db: Session,
    *,
    now: datetime,
    organization_id: Optional[UUID] = None,
    force: bool = False,
    request_id: str | None = None,
) -> JobRunResult:
    """Generate the upcoming week for one organization, or for each one in turn."""
    targets = [organization_id] if organization_id is not None else _organization_ids(db)
    statuses: List[str] = []
    processed = 0
    scheduled = 0
    for org_id in targets:
        try:
            result = generate_weekly_schedules(
                db,
                now=now,
                organization_id=org_id,
                force=force,
                request_id=request_id,
            )
        except Exception:  # pragma: no cover - job failure
            logger.exception("Weekly schedule job failed for organization %s", org_id)
            db.rollback()
            statuses.append("failed")
            continue
        statuses.append(result.status)
        processed += result.users_scheduled
        scheduled += result.scheduled_count
        logger.info(
            "Weekly schedule job for organization %s: status=%s placed=%s",
            org_id,
            result.status,
            result.scheduled_count,
        )
    return JobRunResult(status=_summarize(statuses), items_processed=processed, items_changed=scheduled)


def run_reconcile_job(db: Session, *, now: datetime) -> JobRunResult:
    """Repair schedule statuses for the live week and the week being prepared."""
    checked = 0
    repaired = 0
    for week_start in (active_week_start(now), current_week_start(now)):
        result = reconcile_completion_status(db, week_start)
        checked += result.rows_checked
        repaired += result.rows_repaired
    return JobRunResult(status="completed", items_processed=checked, items_changed=repaired)


def _summarize(statuses: List[str]) -> str:
    if not statuses:
        return "no_availability"
    if len(set(statuses)) == 1:
        return statuses[0]
    if "generated" in statuses:
        return "generated"
    return statuses[0]
