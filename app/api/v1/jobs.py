"""Job submission and polling.

Each submit route validates its kind-specific body, admits the job
(membership, idempotency, atomic charge), and enqueues it. A retried request
with the same idempotency key returns the original job with 200 instead of
201 and is never charged again.
"""

import logging
import secrets
import uuid
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Response, status
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from app.api.deps import Auth, Session
from app.core.errors import Forbidden, JobNotFound
from app.models.job import Job, JobKind, JobRead, JobStatus
from app.services.admission import admit, ensure_member
from app.services.jobs import get_job, list_jobs
from app.workers.main import enqueue_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


# ── Request schemas ───────────────────────────────────────────


class _JobRequest(BaseModel):
    tenant_id: uuid.UUID | None = None  # defaults to the credential's tenant
    project_id: uuid.UUID | None = None
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)


class GenImageRequest(_JobRequest):
    prompt: str = Field(min_length=1, max_length=2000)
    aspect_ratio: str = "16:9"


class GenVideoRequest(_JobRequest):
    prompt: str = Field(min_length=1, max_length=2000)
    duration: int = Field(default=4000, ge=1000, le=10000)
    aspect_ratio: str = "16:9"


class GenAudioRequest(_JobRequest):
    text: str = Field(min_length=1, max_length=5000)
    voice: str = "default"
    speed: float = Field(default=1.0, ge=0.5, le=2.0)


class RenderRequest(_JobRequest):
    commit_id: uuid.UUID


# ── Helpers ───────────────────────────────────────────────────


async def _submit(
    kind: JobKind,
    body: _JobRequest,
    payload: dict[str, Any],
    header_key: str | None,
    auth,
    session,
    response: Response,
) -> JobRead:
    idempotency_key = (
        body.idempotency_key
        or header_key
        or f"{kind.replace('_', '-')}-{secrets.token_urlsafe(16)}"
    )
    result = await admit(
        session,
        tenant_id=body.tenant_id or auth.tenant_id,
        caller_id=auth.user_id,
        job_kind=kind,
        idempotency_key=idempotency_key,
        payload=payload,
        project_id=body.project_id,
    )
    job = result.job

    # Re-enqueue duplicates that never left the queue: heals a lost enqueue
    if not result.was_duplicate or job.status == JobStatus.QUEUED:
        await _enqueue(job)

    response.status_code = status.HTTP_200_OK if result.was_duplicate else status.HTTP_201_CREATED
    return JobRead.model_validate(job)


async def _enqueue(job: Job) -> None:
    try:
        await enqueue_job(str(job.id))
    except (RedisError, OSError):
        # The job is charged and queued; a retry with the same key re-enqueues it
        logger.exception("Failed to enqueue job %s", job.id)


# ── Endpoints ─────────────────────────────────────────────────


@router.post("/gen-image", response_model=JobRead, status_code=status.HTTP_201_CREATED)
async def submit_gen_image(
    body: GenImageRequest,
    auth: Auth,
    session: Session,
    response: Response,
    idempotency_key: str | None = Header(default=None),
) -> JobRead:
    payload = {"prompt": body.prompt, "aspect_ratio": body.aspect_ratio}
    return await _submit(JobKind.GEN_IMAGE, body, payload, idempotency_key, auth, session, response)


@router.post("/gen-video", response_model=JobRead, status_code=status.HTTP_201_CREATED)
async def submit_gen_video(
    body: GenVideoRequest,
    auth: Auth,
    session: Session,
    response: Response,
    idempotency_key: str | None = Header(default=None),
) -> JobRead:
    payload = {
        "prompt": body.prompt,
        "duration": body.duration,
        "aspect_ratio": body.aspect_ratio,
    }
    return await _submit(JobKind.GEN_VIDEO, body, payload, idempotency_key, auth, session, response)


@router.post("/gen-audio", response_model=JobRead, status_code=status.HTTP_201_CREATED)
async def submit_gen_audio(
    body: GenAudioRequest,
    auth: Auth,
    session: Session,
    response: Response,
    idempotency_key: str | None = Header(default=None),
) -> JobRead:
    payload = {"text": body.text, "voice": body.voice, "speed": body.speed}
    return await _submit(JobKind.GEN_AUDIO, body, payload, idempotency_key, auth, session, response)


@router.post("/render", response_model=JobRead, status_code=status.HTTP_201_CREATED)
async def submit_render(
    body: RenderRequest,
    auth: Auth,
    session: Session,
    response: Response,
    idempotency_key: str | None = Header(default=None),
) -> JobRead:
    payload = {"commit_id": str(body.commit_id)}
    return await _submit(JobKind.RENDER, body, payload, idempotency_key, auth, session, response)


@router.get("/{job_id}", response_model=JobRead)
async def get_job_status(job_id: uuid.UUID, auth: Auth, session: Session) -> JobRead:
    """Poll a job. Jobs of tenants the caller doesn't belong to look absent."""
    try:
        job = await get_job(session, job_id)
        await ensure_member(session, job.tenant_id, auth.user_id)
    except (JobNotFound, Forbidden):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from None
    return JobRead.model_validate(job)


@router.get("", response_model=list[JobRead])
async def list_tenant_jobs(
    auth: Auth,
    session: Session,
    tenant_id: uuid.UUID | None = None,
    project_id: uuid.UUID | None = None,
) -> list[JobRead]:
    scope = tenant_id or auth.tenant_id
    await ensure_member(session, scope, auth.user_id)
    jobs = await list_jobs(session, scope, project_id=project_id)
    return [JobRead.model_validate(j) for j in jobs]
