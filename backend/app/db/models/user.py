"""User ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_organization_id", "organization_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    full_name = Column(Text, nullable=True)
    # "member" or "leader"; leaders validate collaborative task completions.
    role = Column(String(length=20), nullable=False, default="member", server_default=sa_text("'member'"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
