"""Access guard: Unauthorized without principal, Forbidden without grant."""

import pytest

from dashboard_iam.domain.exceptions import Forbidden, Unauthorized
from dashboard_iam.domain.models.identity import (
    READER,
    SUPER_ADMIN,
    USER_ADMIN,
    Permission,
    Role,
    User,
)
from dashboard_iam.security.access_guard import AccessGuard, Principal
from dashboard_iam.security.permissions import EffectiveGrants


def _principal(*roles: Role) -> Principal:
    permissions = frozenset(p for r in roles for p in r.permissions)
    return Principal(
        user=User(id="u1", username="u1", email="u1@corp.example", password_hash=None),
        session_id="s1",
        grants=EffectiveGrants(roles=tuple(roles), permissions=permissions),
    )


READER_ROLE = Role(id="r1", name=READER, permissions=frozenset({Permission.DASHBOARD_READ}))
ADMIN_ROLE = Role(
    id="r2", name=SUPER_ADMIN, permissions=frozenset({Permission.ADMIN_ALL})
)
USER_ADMIN_ROLE = Role(
    id="r3",
    name=USER_ADMIN,
    permissions=frozenset({Permission.USER_READ, Permission.USER_ROLES_REQUEST}),
)


@pytest.fixture
def guard():
    return AccessGuard()


def test_missing_principal_is_unauthorized(guard):
    with pytest.raises(Unauthorized):
        guard.require_permission(None, Permission.USER_READ)


def test_missing_permission_is_forbidden(guard):
    with pytest.raises(Forbidden) as exc:
        guard.require_permission(_principal(READER_ROLE), Permission.USER_READ)
    assert exc.value.detail["required"] == "user:read"


def test_wildcard_passes_every_permission_check(guard):
    principal = _principal(ADMIN_ROLE)
    assert guard.require_permission(principal, Permission.USER_DELETE) is principal


def test_wildcard_is_not_a_direct_grant():
    principal = _principal(ADMIN_ROLE)
    assert principal.has_permission(Permission.USER_ROLES_UPDATE)
    assert not principal.has_direct_permission(Permission.USER_ROLES_UPDATE)


def test_require_any_permission(guard):
    principal = _principal(USER_ADMIN_ROLE)
    guard.require_any_permission(
        principal, Permission.USER_ROLES_UPDATE, Permission.USER_ROLES_REQUEST
    )
    with pytest.raises(Forbidden):
        guard.require_any_permission(principal, Permission.USER_DELETE, Permission.ROLE_CREATE)


def test_require_role(guard):
    guard.require_role(_principal(ADMIN_ROLE), SUPER_ADMIN)
    with pytest.raises(Forbidden):
        guard.require_role(_principal(USER_ADMIN_ROLE), SUPER_ADMIN)
