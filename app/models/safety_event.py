"""SafetyEvent — audit trail written when the safety gate blocks a job."""

import uuid
from datetime import datetime
from typing import Any

from sqlmodel import Field, SQLModel

from app.models.base import json_column, new_uuid, utcnow


class SafetyEvent(SQLModel, table=True):
    __tablename__ = "safety_events"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID | None = Field(default=None, foreign_key="users.id")
    job_id: uuid.UUID | None = Field(default=None, foreign_key="jobs.id", index=True)

    category: str = Field(max_length=100, nullable=False)
    action: str = Field(max_length=20, nullable=False)  # "blocked"
    details: dict[str, Any] | None = Field(default=None, sa_column=json_column())

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
