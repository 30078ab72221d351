"""Tests for credit balance, ledger history, and grants."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient


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
async def test_new_tenant_starts_funded(client: AsyncClient):
    headers, data = await _bootstrap(client, "credits-new")
    assert data["balance"] == 1000

    resp = await client.get("/v1/credits/balance", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"tenant_id": data["tenant"]["id"], "balance": 1000}

    resp = await client.get("/v1/credits/ledger", headers=headers)
    entries = resp.json()
    assert len(entries) == 1
    assert entries[0]["delta"] == 1000
    assert entries[0]["reason"] == "opening balance"


@pytest.mark.asyncio
async def test_ledger_lists_charges_in_order(client: AsyncClient):
    headers, _ = await _bootstrap(client, "credits-order")

    with patch("app.api.v1.jobs.enqueue_job", new_callable=AsyncMock):
        resp = await client.post("/v1/jobs/gen-image", json={"prompt": "x"}, headers=headers)
        job_id = resp.json()["id"]
        await client.post("/v1/jobs/gen-audio", json={"text": "y"}, headers=headers)

    resp = await client.get("/v1/credits/ledger", headers=headers)
    entries = resp.json()
    assert [e["delta"] for e in entries] == [1000, -10, -5]
    assert entries[1]["job_id"] == job_id
    assert entries[1]["reason"] == "gen_image job"
    assert entries[0]["id"] < entries[1]["id"] < entries[2]["id"]

    resp = await client.get("/v1/credits/balance", headers=headers)
    assert resp.json()["balance"] == sum(e["delta"] for e in entries)


@pytest.mark.asyncio
async def test_owner_can_grant(client: AsyncClient):
    headers, _ = await _bootstrap(client, "credits-grant")

    resp = await client.post(
        "/v1/credits/grant", json={"amount": 500, "reason": "annual plan"}, headers=headers
    )
    assert resp.status_code == 201
    assert resp.json()["balance"] == 1500

    resp = await client.get("/v1/credits/ledger", headers=headers)
    assert resp.json()[-1]["reason"] == "grant: annual plan"


@pytest.mark.asyncio
async def test_grant_validation(client: AsyncClient):
    headers, _ = await _bootstrap(client, "credits-grant-bad")

    resp = await client.post("/v1/credits/grant", json={"amount": 0}, headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_member_cannot_grant(client: AsyncClient):
    headers, _ = await _bootstrap(client, "credits-member")
    resp = await client.post("/v1/members", json={
        "email": "member@credits-member.com",
        "password": "memberpass1",
        "role": "member",
    }, headers=headers)
    assert resp.status_code == 201

    resp = await client.post("/v1/auth/login", json={
        "email": "member@credits-member.com",
        "password": "memberpass1",
    })
    member_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    resp = await client.post("/v1/credits/grant", json={"amount": 10}, headers=member_headers)
    assert resp.status_code == 403

    # Members can still read the balance
    resp = await client.get("/v1/credits/balance", headers=member_headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_balance_of_foreign_tenant_forbidden(client: AsyncClient):
    headers_a, _ = await _bootstrap(client, "credits-a")
    _, data_b = await _bootstrap(client, "credits-b")

    resp = await client.get(
        "/v1/credits/balance", params={"tenant_id": data_b["tenant"]["id"]}, headers=headers_a
    )
    assert resp.status_code == 403
