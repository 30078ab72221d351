"""Shared base fields and column helpers for all models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def json_column(nullable: bool = True) -> Column:
    """JSON payload column (JSONB-compatible on PostgreSQL, TEXT on SQLite)."""
    return Column(JSON, nullable=nullable)


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into mutable tables."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
