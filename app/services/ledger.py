"""Ledger store and balance account operations.

The ledger is append-only: rows are inserted and never touched again. The
cached balance on ``credit_accounts`` is changed only by single conditional
arithmetic statements issued in the same transaction as the ledger row that
explains the change. Nothing here reads a balance and writes it back.

Helpers that take part in a larger unit of work (``append``,
``debit_if_sufficient``, ``credit_balance``, ``provision_account``) only
flush; the caller owns the commit.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import storage_errors
from app.core.errors import AccountNotFound, StorageError
from app.models.credit import CreditAccount, LedgerEntry

logger = logging.getLogger(__name__)

OPENING_BALANCE_REASON = "opening balance"


async def append(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    delta: int,
    reason: str,
    *,
    job_id: uuid.UUID | None = None,
    project_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
) -> int:
    """Insert one immutable ledger row and return its id.

    ``IntegrityError`` from the per-job unique indexes propagates unchanged
    so callers can treat it as "already recorded". Any other database
    failure surfaces as ``StorageError``.
    """
    entry = LedgerEntry(
        tenant_id=tenant_id,
        user_id=user_id,
        job_id=job_id,
        project_id=project_id,
        delta=delta,
        reason=reason,
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        raise StorageError("Ledger append failed") from exc
    return entry.id  # type: ignore[return-value]


async def find_refund_entry(session: AsyncSession, job_id: uuid.UUID) -> LedgerEntry | None:
    stmt = select(LedgerEntry).where(
        LedgerEntry.job_id == job_id,
        LedgerEntry.delta > 0,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def find_charge_entry(session: AsyncSession, job_id: uuid.UUID) -> LedgerEntry | None:
    stmt = select(LedgerEntry).where(
        LedgerEntry.job_id == job_id,
        LedgerEntry.delta < 0,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def sum_deltas(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    """Sum of every delta for a tenant. Reconciliation only, not for admission."""
    stmt = select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
        LedgerEntry.tenant_id == tenant_id,
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


# ── Balance account ───────────────────────────────────────────


async def get_balance(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    stmt = select(CreditAccount.balance).where(CreditAccount.tenant_id == tenant_id)
    result = await session.execute(stmt)
    balance = result.scalar_one_or_none()
    return balance if balance is not None else 0


async def list_ledger(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    project_id: uuid.UUID | None = None,
) -> list[LedgerEntry]:
    """Entries for a tenant (optionally one project) in append order."""
    stmt = select(LedgerEntry).where(LedgerEntry.tenant_id == tenant_id)
    if project_id is not None:
        stmt = stmt.where(LedgerEntry.project_id == project_id)
    stmt = stmt.order_by(LedgerEntry.id.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def debit_if_sufficient(
    session: AsyncSession, tenant_id: uuid.UUID, amount: int
) -> int | None:
    """Subtract ``amount`` only if the balance covers it.

    One ``UPDATE ... WHERE balance >= :amount RETURNING balance``. Returns the
    new balance, or None when no row matched (insufficient or no account).
    """
    stmt = (
        update(CreditAccount)
        .where(
            CreditAccount.tenant_id == tenant_id,
            CreditAccount.balance >= amount,
        )
        .values(balance=CreditAccount.balance - amount)
        .returning(CreditAccount.balance)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def credit_balance(
    session: AsyncSession, tenant_id: uuid.UUID, amount: int
) -> int | None:
    """Add ``amount`` atomically. Returns the new balance, None if no account."""
    stmt = (
        update(CreditAccount)
        .where(CreditAccount.tenant_id == tenant_id)
        .values(balance=CreditAccount.balance + amount)
        .returning(CreditAccount.balance)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def provision_account(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    starting_balance: int,
    user_id: uuid.UUID | None = None,
) -> CreditAccount:
    """Create the tenant's account and its opening ledger row.

    The starting balance is recorded as a ledger delta so that the balance
    equals the sum of the tenant's deltas from the first row onward.
    """
    account = CreditAccount(tenant_id=tenant_id, balance=starting_balance)
    session.add(account)
    await session.flush()
    if starting_balance:
        await append(
            session,
            tenant_id,
            starting_balance,
            OPENING_BALANCE_REASON,
            user_id=user_id,
        )
    return account


async def grant_credits(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    amount: int,
    reason: str,
    user_id: uuid.UUID | None = None,
) -> int:
    """Top up a tenant: positive ledger row + atomic increment, one commit."""
    if amount <= 0:
        raise ValueError("Grant amount must be positive")

    async with storage_errors(session, "Credit grant"):
        new_balance = await credit_balance(session, tenant_id, amount)
        if new_balance is None:
            await session.rollback()
            raise AccountNotFound(f"No credit account for tenant {tenant_id}")
        await append(session, tenant_id, amount, f"grant: {reason}", user_id=user_id)
        await session.commit()

    logger.info("Granted %d credits to tenant %s (balance %d)", amount, tenant_id, new_balance)
    return new_balance


async def reconcile(session: AsyncSession, tenant_id: uuid.UUID) -> tuple[int, int]:
    """Return (cached balance, ledger sum). They must be equal."""
    balance = await get_balance(session, tenant_id)
    total = await sum_deltas(session, tenant_id)
    if balance != total:
        logger.error(
            "Ledger drift for tenant %s: balance=%d ledger_sum=%d", tenant_id, balance, total
        )
    return balance, total
