"""Tests for API middleware and error mapping: correlation ID, auth headers, validation shape."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_correlation_id_generated(async_client: AsyncClient):
    r = await async_client.get("/health")
    assert r.status_code == 200
    assert len(r.headers["X-Correlation-ID"]) > 0


@pytest.mark.asyncio
async def test_correlation_id_preserved_when_passed(async_client: AsyncClient):
    r = await async_client.get("/health", headers={"X-Correlation-ID": "my-correlation-123"})
    assert r.headers.get("X-Correlation-ID") == "my-correlation-123"
    assert r.json()["correlation_id"] == "my-correlation-123"


@pytest.mark.asyncio
async def test_missing_token_is_401_with_bearer_challenge(async_client: AsyncClient):
    r = await async_client.get("/users/")
    assert r.status_code == 401
    assert r.headers["WWW-Authenticate"] == "Bearer"
    assert r.json()["error"] == "Unauthorized"
    assert "X-Correlation-ID" in r.headers


@pytest.mark.asyncio
async def test_garbage_token_is_401(async_client: AsyncClient):
    r = await async_client.get("/users/", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_request_validation_error_shape(async_client: AsyncClient):
    r = await async_client.post("/auth/login", json={"username": "x"})
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "ValidationFailed"
    assert any("password" in issue for issue in body["issues"])
