"""Tests for liveness and system health endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from app.api.v1.system import ServiceHealth


async def _bootstrap(client: AsyncClient, slug: str):
    resp = await client.post("/v1/tenants", json={
        "tenant_name": f"{slug} Co",
        "tenant_slug": slug,
        "owner_email": f"owner@{slug}.com",
        "owner_password": "testpass123",
    })
    data = resp.json()
    return {"Authorization": f"Bearer {data['api_token']}"}


@pytest.mark.asyncio
async def test_liveness(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_system_health_reports_services(client: AsyncClient):
    headers = await _bootstrap(client, slug="health-ok")
    redis_ok = ServiceHealth(status="ok", version="Redis 7.2.4", latency_ms=1)

    with patch("app.api.v1.system._check_redis", AsyncMock(return_value=redis_ok)):
        resp = await client.get("/v1/system/health", headers=headers)

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"]["status"] == "ok"
    assert data["database"]["version"] == "sqlite"
    assert data["redis"]["version"] == "Redis 7.2.4"


@pytest.mark.asyncio
async def test_system_health_degrades_without_redis(client: AsyncClient):
    headers = await _bootstrap(client, slug="health-degrade")
    redis_down = ServiceHealth(status="error", detail="Connection refused")

    with patch("app.api.v1.system._check_redis", AsyncMock(return_value=redis_down)):
        resp = await client.get("/v1/system/health", headers=headers)

    data = resp.json()
    assert data["database"]["status"] == "ok"
    assert data["redis"]["status"] == "error"
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_system_health_requires_auth(client: AsyncClient):
    resp = await client.get("/v1/system/health")
    assert resp.status_code in (401, 403)
