"""Admission: membership check, idempotent dedupe, atomic check-and-charge."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import storage_errors
from app.core.errors import Forbidden, InsufficientCredits
from app.core.pricing import get_job_cost
from app.models.job import Job, JobStatus
from app.models.membership import Membership
from app.services import ledger

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    job: Job
    was_duplicate: bool
    cost: int = 0


async def ensure_member(
    session: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> Membership:
    """Return the caller's active membership on the tenant or raise Forbidden."""
    stmt = select(Membership).where(
        Membership.tenant_id == tenant_id,
        Membership.user_id == user_id,
        Membership.is_active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    membership = result.scalar_one_or_none()
    if membership is None:
        raise Forbidden("Not a member of this tenant")
    return membership


async def find_by_idempotency_key(
    session: AsyncSession, tenant_id: uuid.UUID, idempotency_key: str
) -> Job | None:
    stmt = select(Job).where(
        Job.tenant_id == tenant_id,
        Job.idempotency_key == idempotency_key,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def admit(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    caller_id: uuid.UUID,
    job_kind: str,
    idempotency_key: str,
    payload: dict[str, Any],
    project_id: uuid.UUID | None = None,
) -> AdmissionResult:
    """Admit a job: debit, create the job row, and write the charge entry.

    Order matters:
    1. membership (Forbidden),
    2. idempotency lookup, so a retried request never reaches the charge,
    3. cost lookup (InvalidJobKind),
    4. conditional debit (InsufficientCredits),
    5-6. job row + ledger row.
    Steps 3-6 commit together. If a concurrent request with the same key
    commits first, the unique constraint rejects our job row, the whole unit
    (debit included) rolls back, and the winner's job is returned.
    """
    await ensure_member(session, tenant_id, caller_id)

    existing = await find_by_idempotency_key(session, tenant_id, idempotency_key)
    if existing is not None:
        logger.info(
            "Duplicate admission for tenant %s key %s -> job %s",
            tenant_id, idempotency_key, existing.id,
        )
        return AdmissionResult(job=existing, was_duplicate=True)

    cost = get_job_cost(job_kind)

    async with storage_errors(session, "Admission"):
        new_balance = await ledger.debit_if_sufficient(session, tenant_id, cost)
        if new_balance is None:
            await session.rollback()
            raise InsufficientCredits(f"Insufficient credits: {job_kind} costs {cost}")

        job = Job(
            tenant_id=tenant_id,
            user_id=caller_id,
            project_id=project_id,
            kind=job_kind,
            status=JobStatus.QUEUED,
            idempotency_key=idempotency_key,
            input=payload,
        )
        session.add(job)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            winner = await find_by_idempotency_key(session, tenant_id, idempotency_key)
            if winner is None:
                raise
            logger.info(
                "Lost idempotency race for tenant %s key %s -> job %s",
                tenant_id, idempotency_key, winner.id,
            )
            return AdmissionResult(job=winner, was_duplicate=True)

        await ledger.append(
            session,
            tenant_id,
            -cost,
            f"{job_kind} job",
            job_id=job.id,
            project_id=project_id,
            user_id=caller_id,
        )
        await session.commit()

    logger.info(
        "Admitted %s job %s for tenant %s: charged %d, balance %d",
        job_kind, job.id, tenant_id, cost, new_balance,
    )
    return AdmissionResult(job=job, was_duplicate=False, cost=cost)
