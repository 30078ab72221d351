"""User model — an identity that acts on tenants through memberships."""

import uuid

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    # Tenant the user signed up under; login scopes the JWT to it
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    email: str = Field(max_length=320, nullable=False, unique=True, index=True)
    password_hash: str = Field(nullable=False)
    display_name: str = Field(default="", max_length=255)
    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class UserRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    display_name: str
    is_active: bool
