"""Tests for job submission and polling endpoints."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import get_settings


async def _bootstrap(client: AsyncClient, slug: str):
    """Helper: bootstrap a tenant and return (headers, data)."""
    resp = await client.post("/v1/tenants", json={
        "tenant_name": f"{slug} Co",
        "tenant_slug": slug,
        "owner_email": f"owner@{slug}.com",
        "owner_password": "testpass123",
    })
    assert resp.status_code == 201
    data = resp.json()
    headers = {"Authorization": f"Bearer {data['api_token']}"}
    return headers, data


@pytest.mark.asyncio
async def test_submit_gen_image(client: AsyncClient):
    headers, data = await _bootstrap(client, "jobs-image")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock) as mock_enqueue:
        resp = await client.post("/v1/jobs/gen-image", json={
            "prompt": "a neon city",
            "idempotency_key": "img-1",
        }, headers=headers)

    assert resp.status_code == 201, resp.text
    job = resp.json()
    assert job["kind"] == "gen_image"
    assert job["status"] == "queued"
    assert job["idempotency_key"] == "img-1"
    assert job["tenant_id"] == data["tenant"]["id"]
    assert job["input"] == {"prompt": "a neon city", "aspect_ratio": "16:9"}
    mock_enqueue.assert_awaited_once_with(job["id"])

    resp = await client.get("/v1/credits/balance", headers=headers)
    assert resp.json()["balance"] == 990


@pytest.mark.asyncio
async def test_retry_with_same_key_returns_original(client: AsyncClient):
    headers, _ = await _bootstrap(client, "jobs-retry")
    body = {"prompt": "a slow pan over hills", "duration": 6000}

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        first = await client.post(
            "/v1/jobs/gen-video", json=body, headers={**headers, "Idempotency-Key": "vid-1"}
        )
        second = await client.post(
            "/v1/jobs/gen-video", json=body, headers={**headers, "Idempotency-Key": "vid-1"}
        )

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]

    resp = await client.get("/v1/credits/balance", headers=headers)
    assert resp.json()["balance"] == 975


@pytest.mark.asyncio
async def test_requests_without_key_are_distinct(client: AsyncClient):
    headers, _ = await _bootstrap(client, "jobs-nokey")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        a = await client.post("/v1/jobs/gen-audio", json={"text": "hello"}, headers=headers)
        b = await client.post("/v1/jobs/gen-audio", json={"text": "hello"}, headers=headers)

    assert a.status_code == b.status_code == 201
    assert a.json()["id"] != b.json()["id"]
    assert a.json()["idempotency_key"].startswith("gen-audio-")


@pytest.mark.asyncio
async def test_duplicate_of_queued_job_is_reenqueued(client: AsyncClient):
    headers, _ = await _bootstrap(client, "jobs-heal")

    with patch(
        "app.api.v1.jobs.enqueue_job",
        AsyncMock(side_effect=[RedisConnectionError("down"), None]),
    ) as mock_enqueue:
        first = await client.post(
            "/v1/jobs/render", json={"commit_id": str(uuid.uuid4()), "idempotency_key": "r-1"},
            headers=headers,
        )
        second = await client.post(
            "/v1/jobs/render", json={"commit_id": str(uuid.uuid4()), "idempotency_key": "r-1"},
            headers=headers,
        )

    # Enqueue failure doesn't fail the request; the retry heals it
    assert first.status_code == 201
    assert second.status_code == 200
    assert mock_enqueue.await_count == 2


@pytest.mark.asyncio
async def test_insufficient_credits_returns_402(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(get_settings(), "starter_credits", 20)
    headers, _ = await _bootstrap(client, "jobs-poor")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock) as mock_enqueue:
        resp = await client.post("/v1/jobs/gen-video", json={"prompt": "x"}, headers=headers)

    assert resp.status_code == 402
    assert resp.json()["error"] == "insufficient_credits"
    mock_enqueue.assert_not_awaited()

    resp = await client.get("/v1/jobs", headers=headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_submit_for_foreign_tenant_forbidden(client: AsyncClient):
    headers_a, _ = await _bootstrap(client, "jobs-tenant-a")
    _, data_b = await _bootstrap(client, "jobs-tenant-b")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        resp = await client.post("/v1/jobs/gen-image", json={
            "prompt": "x",
            "tenant_id": data_b["tenant"]["id"],
        }, headers=headers_a)

    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"


@pytest.mark.asyncio
async def test_invalid_bodies_rejected(client: AsyncClient):
    headers, _ = await _bootstrap(client, "jobs-invalid")

    resp = await client.post("/v1/jobs/gen-image", json={}, headers=headers)
    assert resp.status_code == 422

    resp = await client.post(
        "/v1/jobs/gen-video", json={"prompt": "x", "duration": 60000}, headers=headers
    )
    assert resp.status_code == 422

    resp = await client.post("/v1/jobs/render", json={"commit_id": "nope"}, headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_job_is_member_scoped(client: AsyncClient):
    headers_a, _ = await _bootstrap(client, "jobs-get-a")
    headers_b, _ = await _bootstrap(client, "jobs-get-b")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        resp = await client.post("/v1/jobs/gen-image", json={"prompt": "x"}, headers=headers_a)
    job_id = resp.json()["id"]

    resp = await client.get(f"/v1/jobs/{job_id}", headers=headers_a)
    assert resp.status_code == 200
    assert resp.json()["status"] == "queued"

    resp = await client.get(f"/v1/jobs/{job_id}", headers=headers_b)
    assert resp.status_code == 404

    resp = await client.get(f"/v1/jobs/{uuid.uuid4()}", headers=headers_a)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_jobs_by_project(client: AsyncClient):
    headers, _ = await _bootstrap(client, "jobs-list")
    project_id = str(uuid.uuid4())

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        await client.post("/v1/jobs/gen-image", json={
            "prompt": "in project", "project_id": project_id,
        }, headers=headers)
        await client.post("/v1/jobs/gen-image", json={"prompt": "no project"}, headers=headers)

    resp = await client.get("/v1/jobs", headers=headers)
    assert len(resp.json()) == 2

    resp = await client.get("/v1/jobs", params={"project_id": project_id}, headers=headers)
    jobs = resp.json()
    assert len(jobs) == 1
    assert jobs[0]["project_id"] == project_id
    assert jobs[0]["input"]["prompt"] == "in project"
