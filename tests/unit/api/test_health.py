"""Tests for GET /health: 200, no authentication, correlation ID in response."""

import pytest
from httpx import ASGITransport, AsyncClient

from dashboard_iam.api import dependencies
from dashboard_iam.api.dependencies import build_services
from dashboard_iam.infrastructure.memory.identity_store import InMemoryIdentityStore
from dashboard_iam.main import app
from dashboard_iam.scalability.rate_limiter import InMemoryRateLimitBackend


@pytest.mark.asyncio
async def test_health_returns_200(async_client: AsyncClient):
    r = await async_client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["version"]
    assert "correlation_id" in data


@pytest.mark.asyncio
async def test_health_correlation_id_auto_generated(async_client: AsyncClient):
    r = await async_client.get("/health")
    assert r.status_code == 200
    assert len(r.json()["correlation_id"]) > 0


@pytest.mark.asyncio
async def test_health_reports_seeded_store(async_client: AsyncClient):
    data = (await async_client.get("/health")).json()
    assert data["roles_seeded"] is True
    assert data["store_backend"] == "memory"


@pytest.mark.asyncio
async def test_health_degraded_when_roles_missing(settings):
    services = build_services(
        settings, store=InMemoryIdentityStore(), rate_limit_backend=InMemoryRateLimitBackend()
    )
    app.dependency_overrides[dependencies.get_services] = lambda: services
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            r = await client.get("/health")
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 200
    assert r.json()["status"] == "degraded"
    assert r.json()["roles_seeded"] is False
