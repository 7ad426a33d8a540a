"""Shared fixtures: frozen clock, in-memory identity store, seeded roles, user and principal builders."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from dashboard_iam.api.dependencies import IdentityServices, build_services
from dashboard_iam.application.role_service import seed_roles
from dashboard_iam.config.settings import AppSettings
from dashboard_iam.domain.clock import new_id
from dashboard_iam.domain.models.audit import AuditLogEntry, AuditQuery
from dashboard_iam.domain.models.identity import RoleAssignment, User
from dashboard_iam.infrastructure.memory.identity_store import InMemoryIdentityStore
from dashboard_iam.scalability.rate_limiter import InMemoryRateLimitBackend
from dashboard_iam.security.access_guard import Principal
from dashboard_iam.security.passwords import hash_password
from dashboard_iam.security.permissions import resolve_grants

DEFAULT_PASSWORD = "Str0ngPassw0rd"


class FrozenClock:
    """Callable clock; starts at noon UTC tomorrow so issued tokens are still valid in real time."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        if start is None:
            start = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
                hour=12, minute=0, second=0, microsecond=0
            )
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set_hour(self, hour: int) -> datetime:
        self.now = self.now.replace(hour=hour)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return AppSettings(
        jwt_secret="test-secret-0123456789abcdef0123456789",
        max_failed_logins=3,
        login_attempts_per_window=20,
    )


@pytest.fixture
async def store(clock):
    s = InMemoryIdentityStore()
    await seed_roles(s, clock=clock)
    return s


@pytest.fixture
def services(settings, store, clock) -> IdentityServices:
    return build_services(
        settings, store=store, rate_limit_backend=InMemoryRateLimitBackend(), clock=clock
    )


@pytest.fixture
def role_id(store):
    """Async lookup: role name -> id."""

    async def _role_id(name: str) -> str:
        async with store.transaction() as tx:
            role = await tx.get_role_by_name(name)
        assert role is not None, name
        return role.id

    return _role_id


@pytest.fixture
def make_user(store, clock):
    """Async factory inserting a user with effective assignments for the named roles."""

    async def _make_user(
        username: str,
        role_names: Iterable[str] = (),
        *,
        password: Optional[str] = DEFAULT_PASSWORD,
        **fields,
    ) -> User:
        now = clock()
        user = User(
            id=new_id(),
            username=username,
            email=fields.pop("email", f"{username}@corp.example"),
            password_hash=hash_password(password) if password else None,
            created_at=now,
            updated_at=now,
            **fields,
        )
        async with store.transaction() as tx:
            await tx.add_user(user)
            for name in role_names:
                role = await tx.get_role_by_name(name)
                await tx.add_assignment(
                    RoleAssignment(
                        id=new_id(),
                        user_id=user.id,
                        role_id=role.id,
                        assigned_by="fixture",
                        assigned_at=now,
                    )
                )
        return user

    return _make_user


@pytest.fixture
def principal_for(store, clock):
    """Async factory: user -> Principal with grants resolved at the frozen time."""

    async def _principal_for(user: User, session_id: Optional[str] = None) -> Principal:
        async with store.transaction() as tx:
            current = await tx.get_user(user.id)
            grants = await resolve_grants(tx, user.id, clock())
        return Principal(user=current, session_id=session_id, grants=grants)

    return _principal_for


@pytest.fixture
def audit_entries(store):
    """Async reader over the whole audit trail, optionally filtered by entity id."""

    async def _audit_entries(entity_id: Optional[str] = None) -> list[AuditLogEntry]:
        async with store.transaction() as tx:
            entries, _ = await tx.list_audit(AuditQuery(), 0, 10_000)
        if entity_id is None:
            return entries
        return [e for e in entries if e.entity_id == entity_id]

    return _audit_entries
