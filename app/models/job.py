"""Job model — a unit of billable generation/render work."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, json_column, new_uuid


class JobKind(StrEnum):
    GEN_IMAGE = "gen_image"
    GEN_VIDEO = "gen_video"
    GEN_AUDIO = "gen_audio"
    RENDER = "render"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.BLOCKED})

# target status -> statuses it may be entered from. RUNNING -> RUNNING is
# listed so a redelivered claim is a harmless repeat write.
ALLOWED_SOURCES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.RUNNING: frozenset({JobStatus.QUEUED, JobStatus.RUNNING}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
    JobStatus.BLOCKED: frozenset({JobStatus.RUNNING}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return current in ALLOWED_SOURCES.get(target, frozenset())


class Job(TimestampMixin, SQLModel, table=True):
    __tablename__ = "jobs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_jobs_tenant_idempotency_key"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    project_id: uuid.UUID | None = Field(default=None, nullable=True, index=True)

    kind: str = Field(max_length=50, nullable=False)
    status: JobStatus = Field(default=JobStatus.QUEUED, nullable=False)
    idempotency_key: str = Field(max_length=255, nullable=False)

    input: dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))
    result: dict[str, Any] | None = Field(default=None, sa_column=json_column())
    error: dict[str, Any] | None = Field(default=None, sa_column=json_column())


# ── Pydantic schemas ─────────────────────────────────────────

class JobRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    project_id: uuid.UUID | None
    kind: str
    status: JobStatus
    idempotency_key: str
    input: dict[str, Any]
    result: dict[str, Any] | None
    error: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime
