"""Authentication: registration, login, lockout, throttling, bearer authentication, logout."""

import pytest

from dashboard_iam.domain.exceptions import (
    AccountLocked,
    DuplicateIdentity,
    NoProvisioningRule,
    RateLimited,
    Unauthorized,
    ValidationFailed,
)
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.identity import READER, Permission
from dashboard_iam.governance.audit_trail import AuditAction

DEFAULT_PASSWORD = "Str0ngPassw0rd"

META = RequestMeta(ip_address="203.0.113.7", user_agent="pytest")


async def test_register_assigns_reader_and_audits_self(services, audit_entries):
    user = await services.auth.register(
        username="newbie", email="newbie@corp.example", password=DEFAULT_PASSWORD
    )
    assert user.password_hash and user.password_hash != DEFAULT_PASSWORD
    login = await services.auth.login("newbie", DEFAULT_PASSWORD, META)
    assert login.grants.role_names == {READER}
    [registered] = [
        e for e in await audit_entries(user.id) if e.action == AuditAction.USER_REGISTERED
    ]
    assert registered.actor_id == user.id
    assert "password_hash" not in registered.after


async def test_register_rejects_duplicates_and_weak_passwords(services, make_user):
    await make_user("taken")
    with pytest.raises(DuplicateIdentity):
        await services.auth.register(
            username="other", email="taken@corp.example", password=DEFAULT_PASSWORD
        )
    with pytest.raises(DuplicateIdentity):
        await services.auth.register(
            username="taken", email="fresh@corp.example", password=DEFAULT_PASSWORD
        )
    with pytest.raises(ValidationFailed) as exc:
        await services.auth.register(username="weak", email="weak@corp.example", password="abc")
    assert len(exc.value.issues) >= 2


async def test_login_by_username_or_email(services, make_user, clock):
    user = await make_user("alice", [READER])
    by_name = await services.auth.login("alice", DEFAULT_PASSWORD, META)
    by_email = await services.auth.login("alice@corp.example", DEFAULT_PASSWORD, META)
    assert by_name.user.id == by_email.user.id == user.id
    assert by_name.session.ip_address == "203.0.113.7"
    assert by_name.user.last_login_at == clock()


async def test_unknown_identity_is_unauthorized(services):
    with pytest.raises(Unauthorized):
        await services.auth.login("ghost", DEFAULT_PASSWORD, META)


async def test_lockout_after_repeated_failures(services, make_user, clock, audit_entries):
    user = await make_user("bob", [READER])
    for _ in range(3):
        with pytest.raises(Unauthorized):
            await services.auth.login("bob", "WrongPassw0rd", META)
    with pytest.raises(AccountLocked) as exc:
        await services.auth.login("bob", DEFAULT_PASSWORD, META)
    assert exc.value.locked_until > clock()
    failures = [e for e in await audit_entries(user.id) if e.action == AuditAction.LOGIN_FAILED]
    assert len(failures) == 3

    clock.advance(minutes=31)
    result = await services.auth.login("bob", DEFAULT_PASSWORD, META)
    assert result.user.failed_attempts == 0
    assert result.user.locked_until is None


async def test_inactive_or_suspended_user_cannot_login(services, make_user):
    await make_user("gone", [READER], is_active=False)
    await make_user("paused", [READER], is_suspended=True)
    with pytest.raises(Unauthorized):
        await services.auth.login("gone", DEFAULT_PASSWORD, META)
    with pytest.raises(Unauthorized):
        await services.auth.login("paused", DEFAULT_PASSWORD, META)


async def test_throttle_rejects_after_window_budget(services, make_user):
    await make_user("carl", [READER])
    for _ in range(20):
        await services.auth.login("carl", DEFAULT_PASSWORD, META)
    with pytest.raises(RateLimited) as exc:
        await services.auth.login("carl", DEFAULT_PASSWORD, META)
    assert exc.value.detail["retry_after_seconds"] == 900
    # Other origins keep their own budget.
    await services.auth.login("carl", DEFAULT_PASSWORD, RequestMeta(ip_address="198.51.100.2"))


async def test_authenticate_resolves_principal(services, make_user):
    await make_user("dora", [READER])
    login = await services.auth.login("dora", DEFAULT_PASSWORD, META)
    principal = await services.auth.authenticate(login.access_token)
    assert principal.id == login.user.id
    assert principal.session_id == login.session.id
    assert principal.has_permission(Permission.DASHBOARD_READ)


async def test_authenticate_fails_after_session_expiry(services, make_user, clock):
    await make_user("eli", [READER], session_timeout_hours=1)
    login = await services.auth.login("eli", DEFAULT_PASSWORD, META)
    clock.advance(hours=2)
    with pytest.raises(Unauthorized):
        await services.auth.authenticate(login.access_token)


async def test_authenticate_fails_for_deactivated_user(services, make_user):
    user = await make_user("finn", [READER])
    login = await services.auth.login("finn", DEFAULT_PASSWORD, META)
    async with services.store.transaction() as tx:
        current = await tx.get_user(user.id)
        current.is_active = False
        await tx.save_user(current)
    with pytest.raises(Unauthorized):
        await services.auth.authenticate(login.access_token)


async def test_logout_ends_session(services, make_user, clock, audit_entries):
    await make_user("gail", [READER])
    login = await services.auth.login("gail", DEFAULT_PASSWORD, META)
    principal = await services.auth.authenticate(login.access_token)
    clock.advance(minutes=5)
    await services.auth.logout(principal, META)
    with pytest.raises(Unauthorized):
        await services.auth.authenticate(login.access_token)
    actions = [e.action for e in await audit_entries(login.session.id)]
    assert actions == [AuditAction.SESSION_ENDED, AuditAction.LOGIN_SUCCEEDED]


async def test_logout_requires_principal(services):
    with pytest.raises(Unauthorized):
        await services.auth.logout(None)


async def test_external_login_without_provisioning_rules_is_refused(services):
    with pytest.raises(NoProvisioningRule):
        await services.auth.login_external({"email": "x@partner.com"}, "google")
