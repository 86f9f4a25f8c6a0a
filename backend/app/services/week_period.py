"""Weekly cycle period resolution.

A scheduling week starts on Wednesday at 13:30 (local to ``scheduling_timezone``).
Relative to that instant the week moves through three closed-open periods:

    filling    [Wednesday 13:30 one week before, Monday 13:30)
    reviewing  [Monday 13:30, Wednesday 13:30)
    active     [Wednesday 13:30, ...)  -- the live week, locked for edits

Everything here is a pure function of the instant passed in.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.errors import InvalidWeekStartError

WEEKDAY_NAMES: Tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class Period(str, Enum):
    FILLING = "filling"
    REVIEWING = "reviewing"
    ACTIVE = "active"


@dataclass(frozen=True)
class PeriodState:
    period: Period
    week_start: date
    opens_at: datetime
    review_at: datetime
    locks_at: datetime

    @property
    def is_locked(self) -> bool:
        return self.period is Period.ACTIVE


def scheduling_zone() -> ZoneInfo:
    return ZoneInfo(settings.scheduling_timezone)


def localize(now: datetime) -> datetime:
    """Interpret naive instants in the scheduling zone; convert aware ones into it."""
    zone = scheduling_zone()
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now.astimezone(zone)


def _boundary_time() -> time:
    return time(hour=settings.week_boundary_hour, minute=settings.week_boundary_minute)


def week_bounds(week_start: date) -> Tuple[datetime, datetime, datetime]:
    """Return ``(opens_at, review_at, locks_at)`` for the week starting on ``week_start``."""
    zone = scheduling_zone()
    boundary = _boundary_time()
    opens_at = datetime.combine(week_start - timedelta(days=7), boundary, tzinfo=zone)
    review_at = datetime.combine(week_start - timedelta(days=settings.review_lead_days), boundary, tzinfo=zone)
    locks_at = datetime.combine(week_start, boundary, tzinfo=zone)
    return opens_at, review_at, locks_at


def current_week_start(now: datetime) -> date:
    """Return the week currently being prepared: the first boundary strictly after ``now``.

    On the start weekday the boundary minute itself already belongs to the following week.
    """
    local = localize(now)
    days_ahead = (settings.week_start_weekday - local.weekday()) % 7
    candidate = local.date() + timedelta(days=days_ahead)
    if datetime.combine(candidate, _boundary_time(), tzinfo=local.tzinfo) <= local:
        candidate += timedelta(days=7)
    return candidate


def active_week_start(now: datetime) -> date:
    """Return the week that is live (active) at ``now``."""
    return current_week_start(now) - timedelta(days=7)


def resolve_period(now: datetime, week_start: date | None = None) -> PeriodState:
    """Map ``now`` to the period of ``week_start`` (default: the week being prepared)."""
    local = localize(now)
    target = week_start or current_week_start(local)
    opens_at, review_at, locks_at = week_bounds(target)

    if local >= locks_at:
        period = Period.ACTIVE
    elif local >= review_at:
        period = Period.REVIEWING
    else:
        # Instants before opens_at only occur for explicitly requested future weeks;
        # they are still open for availability.
        period = Period.FILLING

    return PeriodState(
        period=period,
        week_start=target,
        opens_at=opens_at,
        review_at=review_at,
        locks_at=locks_at,
    )


def week_dates(week_start: date) -> list[date]:
    """The seven calendar dates of a scheduling week, in order from its start day."""
    return [week_start + timedelta(days=offset) for offset in range(7)]


def is_week_start(value: date) -> bool:
    return value.weekday() == settings.week_start_weekday


def require_week_start(value: date) -> None:
    if not is_week_start(value):
        raise InvalidWeekStartError(value)
