"""Translate domain errors raised by the services into HTTP errors."""
from __future__ import annotations

from fastapi import HTTPException, status

from app.core.errors import (
    AgendaError,
    AvailabilityValidationError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
    ToggleInFlightError,
    WeekLockedError,
)


def to_http_exception(exc: AgendaError) -> HTTPException:
    if isinstance(exc, AvailabilityValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": exc.code, "message": exc.message},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, OwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, WeekLockedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "WEEK_LOCKED", "message": str(exc)},
        )
    if isinstance(exc, ToggleInFlightError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "UPDATE_IN_PROGRESS", "message": str(exc)},
        )
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unexpected scheduling error")
