"""Job state machine.

    queued -> running -> succeeded | failed | blocked

Every transition is a conditional ``UPDATE jobs SET status = :target WHERE
id = :id AND status IN (:allowed)``, so a repeated call from a redelivered
worker matches zero rows and changes nothing. Terminal jobs never move.
Failed and blocked jobs always go through the refund engine (which is
itself idempotent); succeeded jobs never do.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import storage_errors
from app.core.errors import JobNotFound
from app.core.security import sign_mint_receipt
from app.models.asset import Asset
from app.models.base import new_uuid, utcnow
from app.models.job import ALLOWED_SOURCES, Job, JobStatus, can_transition
from app.models.safety_event import SafetyEvent
from app.services import ledger
from app.services.providers import MODEL_VERSION, PROVIDER_NAME, ProviderOutput
from app.services.refund import refund_job
from app.services.safety import SafetyVerdict, prompt_for
from app.services.storage import delete_asset, save_asset

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.BLOCKED})


# ── Reads ─────────────────────────────────────────────────────


async def get_job(
    session: AsyncSession,
    job_id: uuid.UUID,
    tenant_id: uuid.UUID | None = None,
) -> Job:
    """Load a job fresh from the database. Raises JobNotFound."""
    stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    if tenant_id is not None:
        stmt = stmt.where(Job.tenant_id == tenant_id)
    result = await session.execute(stmt)
    job = result.scalar_one_or_none()
    if job is None:
        raise JobNotFound(f"Job {job_id} not found")
    return job


async def list_jobs(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    project_id: uuid.UUID | None = None,
    limit: int = 100,
) -> list[Job]:
    stmt = select(Job).where(Job.tenant_id == tenant_id)
    if project_id is not None:
        stmt = stmt.where(Job.project_id == project_id)
    stmt = stmt.order_by(Job.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Transitions ───────────────────────────────────────────────


async def _transition(
    session: AsyncSession,
    job_id: uuid.UUID,
    target: JobStatus,
    **values: Any,
) -> bool:
    """Conditionally move a job to ``target``. True if this call moved it."""
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status.in_(ALLOWED_SOURCES[target]),  # type: ignore[attr-defined]
        )
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount > 0


async def transition_to_running(session: AsyncSession, job_id: uuid.UUID) -> Job:
    """Claim a job for execution.

    Safe to repeat: a running job stays running. A terminal job is returned
    as-is so the worker can see there is nothing left to do.
    """
    async with storage_errors(session, "Mark running"):
        claimed = await _transition(session, job_id, JobStatus.RUNNING)
        await session.commit()

    job = await get_job(session, job_id)
    if claimed:
        logger.info("Job %s (%s) running", job_id, job.kind)
    else:
        logger.info("Job %s already %s, not claimed", job_id, job.status)
    return job


async def ensure_refunded(session: AsyncSession, job: Job, reason: str | None = None) -> Job:
    """Refund a failed or blocked job if that has not happened yet.

    Safe to call any number of times; a worker redelivered after a refund
    that never committed uses it to finish the job's settlement.
    """
    if job.status not in REFUNDABLE_STATUSES:
        return job
    job_id = job.id
    if reason is None:
        message = str((job.error or {}).get("message") or "Unknown error")[:100]
        reason = f"{job.kind} {job.status}: {message}"
    outcome = await refund_job(session, job, reason)
    logger.info(
        "Refund for job %s: refunded=%s already_refunded=%s",
        job_id, outcome.refunded, outcome.already_refunded,
    )
    return await get_job(session, job_id)


async def record_blocked(
    session: AsyncSession, job_id: uuid.UUID, verdict: SafetyVerdict
) -> Job:
    """running -> blocked: audit the verdict, set the error, refund."""
    job = await get_job(session, job_id)
    category = verdict.category or "content_policy"

    async with storage_errors(session, "Record blocked"):
        moved = await _transition(
            session,
            job_id,
            JobStatus.BLOCKED,
            error={"message": f"Blocked: {verdict.reason}", "category": category},
        )
        if moved:
            session.add(
                SafetyEvent(
                    tenant_id=job.tenant_id,
                    user_id=job.user_id,
                    job_id=job_id,
                    category=category,
                    action="blocked",
                    details={"prompt": prompt_for(job.input)[:200], "reason": verdict.reason},
                )
            )
        await session.commit()

    if moved:
        logger.warning("Job %s blocked by safety policy: %s", job_id, category)
    job = await get_job(session, job_id)
    return await ensure_refunded(
        session, job, f"{job.kind} blocked by safety policy: {category}"
    )


async def record_failure(
    session: AsyncSession, job_id: uuid.UUID, error: dict[str, Any]
) -> Job:
    """running -> failed: store the error payload, refund."""
    async with storage_errors(session, "Record failure"):
        moved = await _transition(session, job_id, JobStatus.FAILED, error=error)
        await session.commit()

    job = await get_job(session, job_id)
    if moved:
        logger.warning("Job %s failed: %s", job_id, error.get("message"))
    message = str(error.get("message") or "Unknown error")[:100]
    return await ensure_refunded(session, job, f"{job.kind} failed: {message}")


def build_provenance(
    job: Job,
    output: ProviderOutput,
    warnings: Sequence[str],
    credits_charged: int,
    started_at: str,
) -> dict[str, Any]:
    return {
        "job_id": str(job.id),
        "provider": PROVIDER_NAME,
        "model": output.model or f"stub-{job.kind}",
        "model_version": MODEL_VERSION,
        "input": {"prompt": prompt_for(job.input), "params": job.input},
        "output": {
            "asset_type": output.asset_type,
            "mime_type": output.mime_type,
            "params": output.metadata,
        },
        "safety": {"blocked": False, "events": list(warnings)},
        "cost": {"provider_cost_usd_est": 0, "credits_charged": credits_charged},
        "timestamps": {
            "queued_at": job.created_at.isoformat(),
            "started_at": started_at,
            "finished_at": utcnow().isoformat(),
        },
    }


async def record_success(
    session: AsyncSession,
    job_id: uuid.UUID,
    output: ProviderOutput,
    warnings: Sequence[str] = (),
) -> Job:
    """running -> succeeded: store the asset with its mint receipt. No ledger action.

    The status update, the asset file, and the asset row commit together; a
    second call finds the job no longer running and does nothing.
    """
    job = await get_job(session, job_id)
    if not can_transition(job.status, JobStatus.SUCCEEDED):
        logger.info("Job %s already %s, ignoring completion", job_id, job.status)
        return job

    charge = await ledger.find_charge_entry(session, job_id)
    credits_charged = -charge.delta if charge is not None else 0
    asset_id = new_uuid()
    provenance = build_provenance(
        job, output, warnings, credits_charged, started_at=job.updated_at.isoformat()
    )

    async with storage_errors(session, "Record success"):
        moved = await _transition(session, job_id, JobStatus.SUCCEEDED)
        if not moved:
            await session.rollback()
            return await get_job(session, job_id)

        try:
            storage_path = await save_asset(str(asset_id), output.data, output.extension)
        except OSError:
            await session.rollback()
            raise

        try:
            await _store_success(session, job, asset_id, storage_path, output, warnings, provenance)
        except SQLAlchemyError:
            # A file exists only alongside its asset row
            await delete_asset(storage_path)
            raise

    logger.info("Job %s succeeded: asset %s (%s)", job_id, asset_id, output.asset_type)
    return await get_job(session, job_id)


async def _store_success(
    session: AsyncSession,
    job: Job,
    asset_id: uuid.UUID,
    storage_path: str,
    output: ProviderOutput,
    warnings: Sequence[str],
    provenance: dict[str, Any],
) -> None:
    """Write the job result and the minted asset row, then commit."""
    job_id = job.id
    await session.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(
            result={
                "asset_id": str(asset_id),
                "asset_type": output.asset_type,
                "storage_path": storage_path,
            }
        )
        .execution_options(synchronize_session=False)
    )
    session.add(
        Asset(
            id=asset_id,
            tenant_id=job.tenant_id,
            job_id=job_id,
            created_by=job.user_id,
            type=output.asset_type,
            mime_type=output.mime_type,
            storage_path=storage_path,
            size_bytes=len(output.data),
            duration_ms=output.duration_ms,
            width=output.width,
            height=output.height,
            mint_receipt_sig=sign_mint_receipt(str(asset_id), str(job_id)),
            provenance=provenance,
            safety_flags={"warnings": list(warnings)} if warnings else None,
        )
    )
    await session.commit()
