"""Generation worker task — runs an admitted job through the state machine."""

from __future__ import annotations

import asyncio
import logging
import uuid

from app.core.config import get_settings
from app.core.database import async_session_factory
from app.core.errors import ProviderError
from app.models.job import TERMINAL_STATUSES
from app.services.jobs import (
    ensure_refunded,
    record_blocked,
    record_failure,
    record_success,
    transition_to_running,
)
from app.services.providers import execute
from app.services.safety import evaluate, prompt_for

logger = logging.getLogger(__name__)


async def process_job(ctx: dict, job_id: str) -> dict:
    """ARQ task: claim, safety-check, execute, and settle a job.

    Delivery is at-least-once. A redelivered job that already reached a
    terminal state is skipped once any refund it is still owed is settled.
    One that was left ``running`` by a crashed worker is executed again, and
    the conditional transitions make sure only one completion (and at most
    one refund) is ever recorded.

    Args:
        ctx: ARQ worker context.
        job_id: UUID of the job to process.

    Returns:
        dict with the job's final status.
    """
    jid = uuid.UUID(job_id)
    settings = get_settings()

    async with async_session_factory() as session:
        job = await transition_to_running(session, jid)
        if job.status in TERMINAL_STATUSES:
            # Finishes a refund that did not commit before a crash or retry
            job = await ensure_refunded(session, job)
            return {"job_id": job_id, "status": job.status, "skipped": True}

        verdict = evaluate(prompt_for(job.input))
        if verdict.blocked:
            job = await record_blocked(session, jid, verdict)
            return {"job_id": job_id, "status": job.status}

        # No transaction stays open across the provider call
        await session.commit()

        try:
            output = await asyncio.wait_for(
                execute(job), timeout=settings.job_execution_timeout_seconds
            )
            job = await record_success(session, jid, output, verdict.warnings)
        except TimeoutError:
            logger.error(
                "Job %s timed out after %ss", job_id, settings.job_execution_timeout_seconds
            )
            await session.rollback()
            job = await record_failure(
                session, jid, {"message": "Job execution timed out", "type": "timeout"}
            )
        except ProviderError as exc:
            logger.error("Provider failed for job %s: %s", job_id, exc.message)
            await session.rollback()
            job = await record_failure(
                session, jid, {"message": exc.message[:2000], "type": "provider_error"}
            )
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            await session.rollback()
            job = await record_failure(
                session, jid, {"message": str(exc)[:2000] or exc.__class__.__name__}
            )

        return {"job_id": job_id, "status": job.status}
