"""Domain errors raised by the scheduling services.

Routes translate these into HTTP responses; services never raise HTTPException.
"""
from __future__ import annotations

from datetime import date
from uuid import UUID


class AgendaError(Exception):
    """Base class for every error the weekly agenda services raise."""


class AvailabilityValidationError(AgendaError):
    NO_DAY_SELECTED = "NO_DAY_SELECTED"
    HOURS_OUT_OF_RANGE = "HOURS_OUT_OF_RANGE"
    INVALID_TIME_OF_DAY = "INVALID_TIME_OF_DAY"
    INVALID_TIME_WINDOW = "INVALID_TIME_WINDOW"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class PersistenceError(AgendaError):
    """A store write failed and the unit of work was rolled back."""

    def __init__(self, message: str = "Could not persist changes"):
        super().__init__(message)
        self.message = message


class InconsistencyError(AgendaError):
    """The completion ledger and the schedule status column disagree."""

    def __init__(self, task_id: UUID, user_id: UUID, expected: str, actual: str):
        super().__init__(
            f"Task {task_id} for user {user_id}: status is {actual!r} but ledger implies {expected!r}"
        )
        self.task_id = task_id
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


class InvalidWeekStartError(AvailabilityValidationError):
    """A week key that does not fall on the configured week-start weekday."""

    CODE = "INVALID_WEEK_START"

    def __init__(self, week_start: date):
        super().__init__(self.CODE, f"{week_start.isoformat()} is not a week start day")
        self.week_start = week_start


class WeekLockedError(AgendaError):
    def __init__(self, week_start: date):
        super().__init__(f"Week starting {week_start.isoformat()} is active and locked")
        self.week_start = week_start


class ToggleInFlightError(AgendaError):
    def __init__(self, task_id: UUID, user_id: UUID):
        super().__init__(f"Another update for task {task_id} (user {user_id}) is in progress")
        self.task_id = task_id
        self.user_id = user_id


class NotFoundError(AgendaError):
    pass


class OwnershipError(AgendaError):
    pass
