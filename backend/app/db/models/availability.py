"""Weekly availability ORM model.

One row per (user, week). Each weekday is stored as three flat columns
(``<day>_available``, ``<day>_start``, ``<day>_end``); use
``app.services.availability_store.day_windows`` to read them as a mapping.
"""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
    text as sa_text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class WeeklyAvailability(Base):
    __tablename__ = "user_weekly_availability"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_user_weekly_availability_user_week"),
        Index("ix_user_weekly_availability_week_start", "week_start"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start = Column(Date, nullable=False)

    monday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    monday_start = Column(Time, nullable=True)
    monday_end = Column(Time, nullable=True)
    tuesday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    tuesday_start = Column(Time, nullable=True)
    tuesday_end = Column(Time, nullable=True)
    wednesday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    wednesday_start = Column(Time, nullable=True)
    wednesday_end = Column(Time, nullable=True)
    thursday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    thursday_start = Column(Time, nullable=True)
    thursday_end = Column(Time, nullable=True)
    friday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    friday_start = Column(Time, nullable=True)
    friday_end = Column(Time, nullable=True)
    saturday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    saturday_start = Column(Time, nullable=True)
    saturday_end = Column(Time, nullable=True)
    sunday_available = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    sunday_start = Column(Time, nullable=True)
    sunday_end = Column(Time, nullable=True)

    preferred_hours_per_day = Column(Integer, nullable=False, default=4)
    preferred_time_of_day = Column(String(length=20), nullable=False, default="flexible")
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
