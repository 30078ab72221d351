"""Membership — which users may act on (and spend from) which tenant."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Membership(TimestampMixin, SQLModel, table=True):
    __tablename__ = "memberships"

    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class MembershipCreate(SQLModel):
    email: str = Field(max_length=320)
    password: str | None = Field(default=None, min_length=8, max_length=128)
    display_name: str = Field(default="", max_length=255)
    role: MemberRole = MemberRole.MEMBER


class MembershipRead(SQLModel):
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    email: str
    role: MemberRole
    is_active: bool
    created_at: datetime
