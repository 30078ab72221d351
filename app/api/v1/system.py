"""System health endpoint — checks connectivity to the database and Redis."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import Auth, Session
from app.core.config import get_settings

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    redis: ServiceHealth


@router.get("/health", response_model=HealthResponse)
async def system_health(_auth: Auth, session: Session) -> HealthResponse:
    """Check connectivity to the ledger database and the job queue."""
    db = await _check_database(session)
    rd = await _check_redis()

    overall = "ok" if all(s.status == "ok" for s in (db, rd)) else "degraded"
    return HealthResponse(status=overall, database=db, redis=rd)


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        dialect = session.bind.dialect.name if session.bind is not None else None
        return ServiceHealth(status="ok", version=dialect, latency_ms=latency)
    except SQLAlchemyError as exc:
        await session.rollback()
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis() -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        try:
            pong = await redis.ping()
            latency = int((time.monotonic() - t0) * 1000)
            info = await redis.info("server")
        finally:
            await redis.aclose()
        version = info.get("redis_version")
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
