"""
FileGate Database Base — SQLAlchemy declarative base, column types and mixins.

Provides:
- Base: SQLAlchemy declarative base for all FileGate models
- UTCDateTime: timezone-aware datetime column that round-trips as UTC on every backend
- TimestampMixin: created_at, updated_at
- SoftDeleteMixin: is_deleted, deleted_at, deleted_by
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores datetimes as naive UTC and hands them back timezone-aware.

    SQLite drops tzinfo on DateTime(timezone=True); normalizing on the way in
    keeps SQL comparisons (expires_at > :now) and Python comparisons consistent.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all FileGate models."""
    pass


class TimestampMixin:
    """Adds created_at and updated_at columns."""
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class SoftDeleteMixin:
    """Adds is_deleted, deleted_at, deleted_by columns for soft delete support."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(UTCDateTime, nullable=True)
    deleted_by = Column(Integer, nullable=True)
