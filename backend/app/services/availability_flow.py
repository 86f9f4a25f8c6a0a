"""Availability questionnaire submission flow."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AvailabilityValidationError, PersistenceError
from app.db.models.activity_log import ActivityLog
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.availability_store import DayAvailability, upsert_availability
from app.services.week_period import WEEKDAY_NAMES, require_week_start
from app.services.weekly_schedule import assert_week_unlocked

logger = logging.getLogger(__name__)

MIN_HOURS_PER_DAY = 2
MAX_HOURS_PER_DAY = 8
TIME_OF_DAY_CHOICES = ("morning", "afternoon", "evening", "flexible")
DEFAULT_HOURS_PER_DAY = 4
DEFAULT_TIME_OF_DAY = "flexible"
DEFAULT_DAY_START = time(hour=9, minute=0)
DEFAULT_DAY_END = time(hour=18, minute=0)

# Half-hour grid offered by the questionnaire, 08:00 through 21:00.
TIME_OPTIONS: List[time] = [time(hour=8 + slot // 2, minute=30 * (slot % 2)) for slot in range(27)]

GenerationDispatcher = Callable[[UUID, date], None]


@dataclass
class AvailabilitySubmission:
    user_id: UUID
    week_start: date
    availability_id: UUID
    available_days: List[str]
    generation_dispatched: bool


def validate_selection(
    per_day: Mapping[str, DayAvailability],
    hours_per_day: int,
    preferred_time: str,
) -> None:
    """Raise AvailabilityValidationError for the first rule the selection breaks."""
    unknown = sorted(set(per_day) - set(WEEKDAY_NAMES))
    if unknown:
        raise AvailabilityValidationError(
            AvailabilityValidationError.INVALID_TIME_WINDOW,
            f"Unknown day(s): {', '.join(unknown)}",
        )
    if not any(window.available for window in per_day.values()):
        raise AvailabilityValidationError(
            AvailabilityValidationError.NO_DAY_SELECTED,
            "Select at least one available day",
        )
    if not MIN_HOURS_PER_DAY <= hours_per_day <= MAX_HOURS_PER_DAY:
        raise AvailabilityValidationError(
            AvailabilityValidationError.HOURS_OUT_OF_RANGE,
            f"Hours per day must be between {MIN_HOURS_PER_DAY} and {MAX_HOURS_PER_DAY}",
        )
    if preferred_time not in TIME_OF_DAY_CHOICES:
        raise AvailabilityValidationError(
            AvailabilityValidationError.INVALID_TIME_OF_DAY,
            f"Preferred time must be one of: {', '.join(TIME_OF_DAY_CHOICES)}",
        )
    for day in WEEKDAY_NAMES:
        window = per_day.get(day)
        if not window or not window.available:
            continue
        if window.start is None or window.end is None or window.start >= window.end:
            raise AvailabilityValidationError(
                AvailabilityValidationError.INVALID_TIME_WINDOW,
                f"{day.capitalize()} must start before it ends",
            )


def submit_availability(
    db: Session,
    *,
    user_id: UUID,
    week_start: date,
    per_day: Mapping[str, DayAvailability],
    hours_per_day: int,
    preferred_time: str,
    now: datetime,
    dispatch_generation: Optional[GenerationDispatcher] = None,
    on_complete: Optional[Callable[[AvailabilitySubmission], None]] = None,
    request_id: str | None = None,
) -> AvailabilitySubmission:
    """
    Validate and upsert a user's availability for one week, then hand off preview generation.

    The upsert is authoritative. Preview generation is best-effort: a dispatcher failure is
    logged and reported through ``generation_dispatched`` but never fails the submission.
    """
    require_week_start(week_start)
    validate_selection(per_day, hours_per_day, preferred_time)
    assert_week_unlocked(week_start, now)

    available_days = [day for day in WEEKDAY_NAMES if per_day.get(day) and per_day[day].available]
    metadata = {
        "week_start": week_start.isoformat(),
        "available_days": available_days,
        "hours_per_day": hours_per_day,
        "preferred_time": preferred_time,
    }

    try:
        with trace("availability.submit", metadata=metadata, user_id=str(user_id), request_id=request_id):
            record = upsert_availability(
                db,
                user_id=user_id,
                week_start=week_start,
                days=per_day,
                preferred_hours_per_day=hours_per_day,
                preferred_time_of_day=preferred_time,
                submitted_at=now,
            )
            db.add(
                ActivityLog(
                    user_id=user_id,
                    action_type="availability_submitted",
                    action_payload={**metadata, "request_id": request_id or ""},
                    reason="Weekly availability saved",
                )
            )
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Saving availability failed for user %s week %s", user_id, week_start)
        log_metric("availability.submit.failed", 1, metadata={"user_id": str(user_id)})
        raise PersistenceError("Could not save availability") from exc

    dispatched = False
    if dispatch_generation is not None:
        try:
            dispatch_generation(user_id, week_start)
            dispatched = True
        except Exception:
            logger.exception("Preview generation dispatch failed for user %s week %s", user_id, week_start)
            log_metric("generation.preview.dispatch_failed", 1, metadata={"user_id": str(user_id)})

    submission = AvailabilitySubmission(
        user_id=user_id,
        week_start=week_start,
        availability_id=record.id,
        available_days=available_days,
        generation_dispatched=dispatched,
    )
    log_metric(
        "availability.submit.success",
        1,
        metadata={"user_id": str(user_id), "days": len(available_days)},
    )
    if on_complete is not None:
        on_complete(submission)
    return submission
