"""API token model — bearer tokens bound to a (tenant, user) pair."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class ApiToken(TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_tokens"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    name: str = Field(max_length=255, nullable=False)

    # SHA-256 of the raw token; the raw value is returned once at bootstrap
    token_hash: str = Field(nullable=False, unique=True, index=True)
    token_prefix: str = Field(max_length=12, nullable=False)

    is_active: bool = Field(default=True)
    expires_at: datetime | None = Field(default=None)
    last_used_at: datetime | None = Field(default=None)
