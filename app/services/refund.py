"""Refund engine: full reversal for failed or blocked jobs, at most once.

Credits are charged at admission (optimistic debit). A job that fails or is
blocked gets its full charge back as a positive ledger row; a succeeded job
keeps its charge. The partial unique index on ``credit_ledger(job_id) WHERE
delta > 0`` is what guarantees a single refund: however many workers race
here, only one insert can commit, and only the transaction whose insert
succeeded credits the balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import storage_errors
from app.core.errors import AccountNotFound
from app.models.job import Job
from app.services import ledger

logger = logging.getLogger(__name__)

REFUND_REASON_PREFIX = "refund: "


@dataclass(frozen=True)
class RefundResult:
    refunded: bool
    already_refunded: bool


async def refund_job(session: AsyncSession, job: Job, reason: str) -> RefundResult:
    """Reverse a job's charge exactly once.

    The refunded amount is the magnitude of the job's own charge row, so a
    later price change cannot skew it. A job with no (or a zero) charge is a
    no-op. The session must not hold uncommitted work: this runs as its own
    unit and commits or rolls back everything in the session.
    """
    # A rollback below expires ``job``; keep plain values.
    job_id, tenant_id = job.id, job.tenant_id
    project_id, user_id = job.project_id, job.user_id

    charge = await ledger.find_charge_entry(session, job_id)
    amount = -charge.delta if charge is not None else 0
    if amount <= 0:
        return RefundResult(refunded=False, already_refunded=False)

    if await ledger.find_refund_entry(session, job_id) is not None:
        logger.info("Refund already exists for job %s, skipping", job_id)
        return RefundResult(refunded=False, already_refunded=True)

    async with storage_errors(session, "Refund"):
        try:
            await ledger.append(
                session,
                tenant_id,
                amount,
                f"{REFUND_REASON_PREFIX}{reason}"[:500],
                job_id=job_id,
                project_id=project_id,
                user_id=user_id,
            )
        except IntegrityError:
            await session.rollback()
            logger.info("Concurrent refund won for job %s, skipping", job_id)
            return RefundResult(refunded=False, already_refunded=True)

        new_balance = await ledger.credit_balance(session, tenant_id, amount)
        if new_balance is None:
            await session.rollback()
            raise AccountNotFound(f"No credit account for tenant {tenant_id}")
        await session.commit()

    logger.info(
        "Refunded %d credits for job %s (tenant %s, balance %d): %s",
        amount, job_id, tenant_id, new_balance, reason,
    )
    return RefundResult(refunded=True, already_refunded=False)
