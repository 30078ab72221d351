"""ARQ worker entrypoint."""

import asyncio

from arq.connections import ArqRedis, RedisSettings, create_pool

from app.core.config import get_settings
from app.core.logging import setup_logging
from app.workers.generation import process_job

QUEUE_TASK = "process_job"


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def enqueue_job(job_id: str) -> None:
    """Push an admitted job onto the queue.

    The ARQ job id is the ledger job id, so enqueueing the same job twice
    (e.g. a client retry racing the first request) is collapsed by ARQ.
    """
    redis: ArqRedis = await create_pool(_redis_settings())
    try:
        await redis.enqueue_job(QUEUE_TASK, job_id=job_id, _job_id=f"job:{job_id}")
    finally:
        await redis.aclose()


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    from app.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    from app.core.database import engine
    await engine.dispose()


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [process_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = get_settings().worker_max_jobs
    max_tries = get_settings().worker_max_tries
    # Above the execution timeout so the task can still record the failure
    job_timeout = int(get_settings().job_execution_timeout_seconds) + 60


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
