"""Asset model — the output of a succeeded job, carrying its mint receipt."""

import uuid
from datetime import datetime
from typing import Any

from sqlmodel import Field, SQLModel

from app.models.base import json_column, new_uuid, utcnow


class Asset(SQLModel, table=True):
    __tablename__ = "assets"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    # One asset per job; a redelivered completion cannot mint a second one
    job_id: uuid.UUID = Field(foreign_key="jobs.id", nullable=False, unique=True)
    created_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")

    type: str = Field(max_length=20, nullable=False)  # image | video | audio | render
    mime_type: str = Field(max_length=100, nullable=False)
    storage_path: str = Field(nullable=False)
    size_bytes: int = Field(default=0)
    duration_ms: int | None = Field(default=None)
    width: int | None = Field(default=None)
    height: int | None = Field(default=None)

    mint_receipt_sig: str = Field(max_length=64, nullable=False)
    provenance: dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))
    safety_flags: dict[str, Any] | None = Field(default=None, sa_column=json_column())

    created_at: datetime = Field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class AssetRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    job_id: uuid.UUID
    type: str
    mime_type: str
    size_bytes: int
    duration_ms: int | None
    width: int | None
    height: int | None
    mint_receipt_sig: str
    mint_verified: bool = False
    provenance: dict[str, Any]
    safety_flags: dict[str, Any] | None
    created_at: datetime
