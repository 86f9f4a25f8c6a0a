"""Declarative base and shared column types."""
from __future__ import annotations

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import JSON, TypeDecorator

Base = declarative_base()


class JSONBCompat(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON on SQLite so the test suite can run in memory."""

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":  # pragma: no cover - dialect specific
            return dialect.type_descriptor(JSON())
        return dialect.type_descriptor(JSONB())
