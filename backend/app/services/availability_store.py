"""Persistence helpers for weekly availability records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Dict, List, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models.availability import WeeklyAvailability
from app.services.week_period import WEEKDAY_NAMES


@dataclass(frozen=True)
class DayAvailability:
    available: bool
    start: time | None = None
    end: time | None = None


def get_availability(db: Session, user_id: UUID, week_start: date) -> WeeklyAvailability | None:
    return (
        db.query(WeeklyAvailability)
        .filter(WeeklyAvailability.user_id == user_id, WeeklyAvailability.week_start == week_start)
        .one_or_none()
    )


def has_availability(db: Session, user_id: UUID, week_start: date) -> bool:
    return (
        db.query(WeeklyAvailability.id)
        .filter(WeeklyAvailability.user_id == user_id, WeeklyAvailability.week_start == week_start)
        .first()
        is not None
    )


def list_week_availability(db: Session, week_start: date) -> List[WeeklyAvailability]:
    return (
        db.query(WeeklyAvailability)
        .filter(WeeklyAvailability.week_start == week_start)
        .order_by(WeeklyAvailability.submitted_at)
        .all()
    )


def upsert_availability(
    db: Session,
    *,
    user_id: UUID,
    week_start: date,
    days: Mapping[str, DayAvailability],
    preferred_hours_per_day: int,
    preferred_time_of_day: str,
    submitted_at,
) -> WeeklyAvailability:
    """Insert or overwrite the (user_id, week_start) row. Flushes but does not commit."""
    record = get_availability(db, user_id, week_start)
    if record is None:
        record = WeeklyAvailability(user_id=user_id, week_start=week_start)
        db.add(record)

    for day in WEEKDAY_NAMES:
        window = days.get(day) or DayAvailability(available=False)
        setattr(record, f"{day}_available", window.available)
        setattr(record, f"{day}_start", window.start if window.available else None)
        setattr(record, f"{day}_end", window.end if window.available else None)

    record.preferred_hours_per_day = preferred_hours_per_day
    record.preferred_time_of_day = preferred_time_of_day
    record.submitted_at = submitted_at
    db.flush()
    return record


def day_windows(record: WeeklyAvailability) -> Dict[str, DayAvailability]:
    """Read the flat per-day columns back as ``{day_name: DayAvailability}``."""
    return {
        day: DayAvailability(
            available=bool(getattr(record, f"{day}_available")),
            start=getattr(record, f"{day}_start"),
            end=getattr(record, f"{day}_end"),
        )
        for day in WEEKDAY_NAMES
    }
