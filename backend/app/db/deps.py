"""FastAPI dependencies for database access."""
from __future__ import annotations

from typing import Callable, Iterator

from sqlalchemy.orm import Session

from app.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Session factory handed to background work that outlives the request session."""
    return SessionLocal
