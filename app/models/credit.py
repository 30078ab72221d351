"""Credit account (cached balance) and the append-only credit ledger."""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Index, Integer, text
from sqlmodel import Column, Field, SQLModel

from app.models.base import utcnow


class CreditAccount(SQLModel, table=True):
    """Running balance per tenant.

    Only ever changed by a single conditional ``UPDATE ... SET balance =
    balance +/- n`` issued inside the same transaction as the ledger row
    that justifies it. Never read-modify-written from Python.
    """

    __tablename__ = "credit_accounts"

    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", primary_key=True)
    balance: int = Field(default=0, nullable=False)


class LedgerEntry(SQLModel, table=True):
    """One immutable monetary event. Rows are inserted, never updated or deleted.

    The auto-increment id fixes append order. Two partial unique indexes make
    the per-job guarantees a storage-layer fact: at most one charge
    (``delta < 0``) and at most one refund (``delta > 0``) per job.
    """

    __tablename__ = "credit_ledger"
    __table_args__ = (
        Index(
            "uq_credit_ledger_refund_per_job",
            "job_id",
            unique=True,
            postgresql_where=text("delta > 0"),
            sqlite_where=text("delta > 0"),
        ),
        Index(
            "uq_credit_ledger_charge_per_job",
            "job_id",
            unique=True,
            postgresql_where=text("delta < 0"),
            sqlite_where=text("delta < 0"),
        ),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger().with_variant(Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
    )
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", nullable=True)
    job_id: uuid.UUID | None = Field(default=None, foreign_key="jobs.id", nullable=True)
    # Originating scope (sub-project) for reporting filters
    project_id: uuid.UUID | None = Field(default=None, nullable=True, index=True)

    delta: int = Field(nullable=False)
    reason: str = Field(max_length=500, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class LedgerEntryRead(SQLModel):
    id: int
    tenant_id: uuid.UUID
    user_id: uuid.UUID | None
    job_id: uuid.UUID | None
    project_id: uuid.UUID | None
    delta: int
    reason: str
    created_at: datetime


class BalanceRead(SQLModel):
    tenant_id: uuid.UUID
    balance: int
