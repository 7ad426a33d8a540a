"""Tests for /auth: register, login, lockout and throttle status codes, profile, logout."""

import pytest
from httpx import AsyncClient

from dashboard_iam.config.settings import get_settings

PASSWORD = "Str0ngPassw0rd"


@pytest.mark.asyncio
async def test_register_then_login(async_client: AsyncClient):
    r = await async_client.post(
        "/auth/register",
        json={"username": "newbie", "email": "newbie@corp.example", "password": PASSWORD},
    )
    assert r.status_code == 201
    assert "password_hash" not in r.json()

    r = await async_client.post("/auth/login", json={"username": "newbie", "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["roles"] == ["READER"]
    assert "dashboard:read" in body["permissions"]


@pytest.mark.asyncio
async def test_register_duplicate_is_409_and_weak_password_422(async_client: AsyncClient):
    payload = {"username": "dup", "email": "dup@corp.example", "password": PASSWORD}
    assert (await async_client.post("/auth/register", json=payload)).status_code == 201
    r = await async_client.post("/auth/register", json=payload)
    assert r.status_code == 409
    assert r.json()["error"] == "DuplicateIdentity"

    r = await async_client.post(
        "/auth/register",
        json={"username": "weak", "email": "weak@corp.example", "password": "short"},
    )
    assert r.status_code == 422
    assert r.json()["issues"]


@pytest.mark.asyncio
async def test_wrong_password_then_locked(async_client: AsyncClient, make_user):
    await make_user("bob", ["READER"], password=PASSWORD)
    for _ in range(3):
        r = await async_client.post("/auth/login", json={"username": "bob", "password": "nope"})
        assert r.status_code == 401
    r = await async_client.post("/auth/login", json={"username": "bob", "password": PASSWORD})
    assert r.status_code == 423
    assert r.json()["error"] == "AccountLocked"
    assert "locked_until" in r.json()


@pytest.mark.asyncio
async def test_throttled_login_is_429_with_retry_after(async_client: AsyncClient):
    for _ in range(20):
        await async_client.post("/auth/login", json={"username": "ghost", "password": "x"})
    r = await async_client.post("/auth/login", json={"username": "ghost", "password": "x"})
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "900"


@pytest.mark.asyncio
async def test_forwarded_for_from_untrusted_peer_does_not_reset_throttle(async_client: AsyncClient):
    codes = set()
    for i in range(25):
        r = await async_client.post(
            "/auth/login",
            json={"username": "ghost", "password": "x"},
            headers={"X-Forwarded-For": f"198.51.100.{i}"},
        )
        codes.add(r.status_code)
    assert 429 in codes


@pytest.mark.asyncio
async def test_forwarded_for_from_trusted_proxy_keys_throttle_by_client(
    async_client: AsyncClient, app_with_overrides, settings
):
    app_with_overrides.dependency_overrides[get_settings] = lambda: settings.model_copy(
        update={"trusted_proxies": ["127.0.0.1"]}
    )
    for i in range(25):
        r = await async_client.post(
            "/auth/login",
            json={"username": "ghost", "password": "x"},
            headers={"X-Forwarded-For": f"198.51.100.{i}"},
        )
        assert r.status_code == 401
    for _ in range(20):
        await async_client.post(
            "/auth/login",
            json={"username": "ghost", "password": "x"},
            headers={"X-Forwarded-For": "203.0.113.9"},
        )
    r = await async_client.post(
        "/auth/login",
        json={"username": "ghost", "password": "x"},
        headers={"X-Forwarded-For": "203.0.113.9"},
    )
    assert r.status_code == 429


@pytest.mark.asyncio
async def test_profile_read_and_update(async_client: AsyncClient, login_headers):
    headers = await login_headers("carol", ["READER"])
    r = await async_client.get("/auth/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "carol"
    assert "reports:read" in r.json()["permissions"]

    r = await async_client.put("/auth/profile", json={"first_name": "Caroline"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["first_name"] == "Caroline"


@pytest.mark.asyncio
async def test_logout_invalidates_token(async_client: AsyncClient, login_headers):
    headers = await login_headers("dave", ["READER"])
    assert (await async_client.post("/auth/logout", headers=headers)).status_code == 204
    assert (await async_client.get("/auth/profile", headers=headers)).status_code == 401
