"""Integration tests for the generation worker task."""

import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from app.core.config import get_settings
from app.core.errors import ProviderError, StorageError
from app.models.asset import Asset
from app.models.safety_event import SafetyEvent
from app.services import ledger
from app.services.jobs import get_job, transition_to_running
from app.workers.generation import process_job
from app.workers.main import QUEUE_TASK, enqueue_job


async def _submit(client, slug: str, path: str = "gen-image", body: dict | None = None) -> dict:
    """Bootstrap a tenant through the API and submit one job."""
    resp = await client.post("/v1/tenants", json={
        "tenant_name": "Worker Co",
        "tenant_slug": slug,
        "owner_email": f"{slug}@test.com",
        "owner_password": "password1234",
    })
    data = resp.json()
    headers = {"Authorization": f"Bearer {data['api_token']}"}

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        resp = await client.post(
            f"/v1/jobs/{path}",
            json=body or {"prompt": "a lighthouse at dawn"},
            headers=headers,
        )
    assert resp.status_code == 201, resp.text
    return {
        "headers": headers,
        "tenant_id": uuid.UUID(data["tenant"]["id"]),
        "job_id": resp.json()["id"],
    }


async def _balance(test_session_factory, tenant_id) -> int:
    async with test_session_factory() as s:
        return await ledger.get_balance(s, tenant_id)


@pytest.mark.asyncio
async def test_process_job_success(client, test_session_factory):
    ctx = await _submit(client, "worker-ok")

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result == {"job_id": ctx["job_id"], "status": "succeeded"}

    resp = await client.get(f"/v1/jobs/{ctx['job_id']}", headers=ctx["headers"])
    job = resp.json()
    assert job["status"] == "succeeded"
    assert job["result"]["asset_type"] == "image"

    async with test_session_factory() as s:
        asset = (
            await s.execute(select(Asset).where(Asset.job_id == uuid.UUID(ctx["job_id"])))
        ).scalar_one()
        assert str(asset.id) == job["result"]["asset_id"]
        assert asset.provenance["provider"] == "phork-stub"
        assert asset.provenance["input"]["prompt"] == "a lighthouse at dawn"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 990


@pytest.mark.asyncio
async def test_process_job_records_provider_params_in_provenance(client, test_session_factory):
    ctx = await _submit(
        client, "worker-video", path="gen-video",
        body={"prompt": "waves over a reef", "aspect_ratio": "9:16"},
    )

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "succeeded"
    async with test_session_factory() as s:
        asset = (
            await s.execute(select(Asset).where(Asset.job_id == uuid.UUID(ctx["job_id"])))
        ).scalar_one()
        assert asset.provenance["output"] == {
            "asset_type": "video",
            "mime_type": "video/mp4",
            "params": {"aspect_ratio": "9:16"},
        }

@pytest.mark.asyncio
async def test_process_job_blocked_by_safety(client, test_session_factory):
    ctx = await _submit(client, "worker-blocked", body={"prompt": "a face swap of my boss"})

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "blocked"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000

    async with test_session_factory() as s:
        job = await get_job(s, uuid.UUID(ctx["job_id"]))
        assert job.error["category"] == "deepfake_attempt"
        events = (
            await s.execute(select(SafetyEvent).where(SafetyEvent.job_id == job.id))
        ).scalars().all()
        assert len(events) == 1
        assets = (await s.execute(select(Asset).where(Asset.job_id == job.id))).scalars().all()
        assert assets == []


@pytest.mark.asyncio
async def test_process_job_provider_error_refunds(client, test_session_factory):
    ctx = await _submit(client, "worker-provider")

    with (
        patch("app.workers.generation.async_session_factory", test_session_factory),
        patch(
            "app.workers.generation.execute",
            AsyncMock(side_effect=ProviderError("upstream 500")),
        ),
    ):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "failed"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000

    async with test_session_factory() as s:
        job = await get_job(s, uuid.UUID(ctx["job_id"]))
        assert job.error == {"message": "upstream 500", "type": "provider_error"}


@pytest.mark.asyncio
async def test_process_job_unexpected_error_refunds(client, test_session_factory):
    ctx = await _submit(client, "worker-boom")

    with (
        patch("app.workers.generation.async_session_factory", test_session_factory),
        patch("app.workers.generation.execute", AsyncMock(side_effect=RuntimeError("boom"))),
    ):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "failed"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000


@pytest.mark.asyncio
async def test_process_job_timeout_refunds(client, test_session_factory, monkeypatch):
    ctx = await _submit(client, "worker-timeout")
    monkeypatch.setattr(get_settings(), "job_execution_timeout_seconds", 0.05)

    async def _slow(job):
        await asyncio.sleep(5)

    with (
        patch("app.workers.generation.async_session_factory", test_session_factory),
        patch("app.workers.generation.execute", _slow),
    ):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "failed"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000

    async with test_session_factory() as s:
        job = await get_job(s, uuid.UUID(ctx["job_id"]))
        assert job.error["type"] == "timeout"


@pytest.mark.asyncio
async def test_storage_failure_fails_and_refunds(client, test_session_factory):
    ctx = await _submit(client, "worker-disk")

    with (
        patch("app.workers.generation.async_session_factory", test_session_factory),
        patch("app.services.jobs.save_asset", AsyncMock(side_effect=OSError("disk full"))),
    ):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "failed"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000


@pytest.mark.asyncio
async def test_missing_input_fails_in_provider(client, test_session_factory):
    """A render job whose payload lost its commit id fails and is refunded."""
    ctx = await _submit(client, "worker-render", path="render", body={"commit_id": str(uuid.uuid4())})
    async with test_session_factory() as s:
        job = await get_job(s, uuid.UUID(ctx["job_id"]))
        job.input = {}
        s.add(job)
        await s.commit()

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "failed"
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000


@pytest.mark.asyncio
async def test_redelivered_terminal_job_is_skipped(client, test_session_factory):
    ctx = await _submit(client, "worker-redeliver")

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        await process_job({}, job_id=ctx["job_id"])
        again = await process_job({}, job_id=ctx["job_id"])

    assert again == {"job_id": ctx["job_id"], "status": "succeeded", "skipped": True}
    async with test_session_factory() as s:
        assets = (
            await s.execute(select(Asset).where(Asset.job_id == uuid.UUID(ctx["job_id"])))
        ).scalars().all()
        assert len(assets) == 1
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 990


@pytest.mark.asyncio
async def test_job_left_running_is_resumed(client, test_session_factory):
    """A worker crash leaves the job running; redelivery finishes it."""
    ctx = await _submit(client, "worker-resume")
    async with test_session_factory() as s:
        await transition_to_running(s, uuid.UUID(ctx["job_id"]))

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        result = await process_job({}, job_id=ctx["job_id"])

    assert result["status"] == "succeeded"


@pytest.mark.asyncio
async def test_refund_retried_on_redelivery_of_blocked_job(client, test_session_factory):
    """The block commits but its refund does not; the next delivery settles it."""
    ctx = await _submit(client, "worker-refund-retry", body={"prompt": "a face swap of my boss"})

    with patch("app.workers.generation.async_session_factory", test_session_factory):
        with (
            patch(
                "app.services.jobs.refund_job",
                AsyncMock(side_effect=StorageError("Refund failed; safe to retry")),
            ),
            pytest.raises(StorageError),
        ):
            await process_job({}, job_id=ctx["job_id"])
        assert await _balance(test_session_factory, ctx["tenant_id"]) == 990

        again = await process_job({}, job_id=ctx["job_id"])
        third = await process_job({}, job_id=ctx["job_id"])

    assert again == {"job_id": ctx["job_id"], "status": "blocked", "skipped": True}
    assert third["skipped"] is True
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000
    async with test_session_factory() as s:
        refund = await ledger.find_refund_entry(s, uuid.UUID(ctx["job_id"]))
        assert refund is not None
        assert refund.delta == 10
        assert await ledger.reconcile(s, ctx["tenant_id"]) == (1000, 1000)


@pytest.mark.asyncio
async def test_refund_retried_on_redelivery_of_failed_job(client, test_session_factory):
    ctx = await _submit(client, "worker-refund-retry-failed")

    with (
        patch("app.workers.generation.async_session_factory", test_session_factory),
        patch(
            "app.workers.generation.execute",
            AsyncMock(side_effect=ProviderError("upstream 500")),
        ),
    ):
        with (
            patch(
                "app.services.jobs.refund_job",
                AsyncMock(side_effect=StorageError("Refund failed; safe to retry")),
            ),
            pytest.raises(StorageError),
        ):
            await process_job({}, job_id=ctx["job_id"])

        again = await process_job({}, job_id=ctx["job_id"])

    assert again == {"job_id": ctx["job_id"], "status": "failed", "skipped": True}
    assert await _balance(test_session_factory, ctx["tenant_id"]) == 1000
    async with test_session_factory() as s:
        refund = await ledger.find_refund_entry(s, uuid.UUID(ctx["job_id"]))
        assert refund is not None
        assert "upstream 500" in refund.reason

@pytest.mark.asyncio
async def test_enqueue_job_dedupes_by_job_id():
    redis = AsyncMock()
    with patch("app.workers.main.create_pool", AsyncMock(return_value=redis)):
        await enqueue_job("1234")

    redis.enqueue_job.assert_awaited_once_with(QUEUE_TASK, job_id="1234", _job_id="job:1234")
    redis.aclose.assert_awaited_once()
