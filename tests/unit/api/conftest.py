"""Fixtures for API unit tests: seeded in-memory services behind the real app, AsyncClient, login helper."""

import pytest
from httpx import ASGITransport, AsyncClient

from dashboard_iam.api import dependencies
from dashboard_iam.domain.clock import utc_now
from dashboard_iam.main import app

PASSWORD = "Str0ngPassw0rd"


@pytest.fixture
def clock():
    """Wall clock: tokens and sessions are checked against real time over HTTP."""
    return utc_now


@pytest.fixture
def app_with_overrides(services):
    """App with the service container overridden; lifespan seeding is done by the store fixture."""
    app.dependency_overrides[dependencies.get_services] = lambda: services
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app_with_overrides):
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def login_headers(async_client, make_user):
    """Async factory: create a user with roles, log in over HTTP, return bearer headers."""

    async def _login_headers(username: str, role_names=()) -> dict[str, str]:
        await make_user(username, role_names, password=PASSWORD)
        r = await async_client.post(
            "/auth/login", json={"username": username, "password": PASSWORD}
        )
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _login_headers
