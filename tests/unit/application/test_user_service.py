"""User administration: creation, listing, updates, bulk actions, self-service profile."""

import pytest

from dashboard_iam.domain.exceptions import (
    DuplicateIdentity,
    Forbidden,
    NotFound,
    QuorumViolation,
    SelfActionForbidden,
    Unauthorized,
    ValidationFailed,
)
from dashboard_iam.domain.models.identity import READER, SUPER_ADMIN, USER_ADMIN
from dashboard_iam.governance.audit_trail import AuditAction

PASSWORD = "Str0ngPassw0rd"


@pytest.fixture
async def admins(make_user, principal_for):
    root = await make_user("root", [SUPER_ADMIN])
    root2 = await make_user("root2", [SUPER_ADMIN])
    ua = await make_user("ua", [USER_ADMIN])
    return {
        "root": await principal_for(root),
        "root2": await principal_for(root2),
        "ua": await principal_for(ua),
    }


async def test_create_user_defaults_to_reader(services, admins, audit_entries):
    summary = await services.users.create_user(
        admins["ua"], username="hana", email="hana@corp.example", password=PASSWORD
    )
    assert [r.name for r in summary.roles] == [READER]
    assert "reports:read" in summary.permissions
    [entry] = await audit_entries(summary.user.id)
    assert entry.action == AuditAction.USER_CREATED
    assert entry.actor_id == admins["ua"].id


async def test_create_user_is_atomic_on_unknown_role(services, admins):
    with pytest.raises(ValidationFailed):
        await services.users.create_user(
            admins["root"],
            username="ivan",
            email="ivan@corp.example",
            password=PASSWORD,
            role_names=[READER, "NOPE"],
        )
    async with services.store.transaction() as tx:
        assert await tx.find_user_by_username("ivan") is None


async def test_only_wildcard_holders_assign_super_admin(services, admins):
    with pytest.raises(Forbidden):
        await services.users.create_user(
            admins["ua"],
            username="jay",
            email="jay@corp.example",
            password=PASSWORD,
            role_names=[SUPER_ADMIN],
        )
    created = await services.users.create_user(
        admins["root"],
        username="jay",
        email="jay@corp.example",
        password=PASSWORD,
        role_names=[SUPER_ADMIN],
    )
    assert [r.name for r in created.roles] == [SUPER_ADMIN]


async def test_create_user_rejects_duplicates(services, admins, make_user):
    await make_user("kim")
    with pytest.raises(DuplicateIdentity):
        await services.users.create_user(
            admins["ua"], username="kim", email="kim2@corp.example", password=PASSWORD
        )


async def test_list_users_search_status_and_paging(services, admins, make_user):
    await make_user("lena", [READER])
    await make_user("leo", [READER], is_suspended=True)
    await make_user("mia", [READER], is_active=False)

    page = await services.users.list_users(admins["ua"], search="LENA")
    assert [s.user.username for s in page.items] == ["lena"]

    suspended = await services.users.list_users(admins["ua"], status="suspended")
    assert [s.user.username for s in suspended.items] == ["leo"]

    paged = await services.users.list_users(admins["ua"], page=2, limit=2)
    assert paged.total == 6
    assert len(paged.items) == 2

    with pytest.raises(ValidationFailed):
        await services.users.list_users(admins["ua"], status="banned")


async def test_list_users_requires_read_permission(services, make_user, principal_for):
    reader = await principal_for(await make_user("rd", [READER]))
    with pytest.raises(Forbidden):
        await services.users.list_users(reader)


async def test_user_detail_includes_activity_and_sessions(services, admins, make_user):
    user = await make_user("nora", [READER])
    await services.auth.login("nora", PASSWORD)
    await services.users.update_user(admins["ua"], user.id, first_name="Nora")

    detail = await services.users.get_user(admins["ua"], user.id)
    assert [r.name for r in detail.roles] == [READER]
    assert len(detail.active_sessions) == 1
    assert AuditAction.USER_UPDATED in {e.action for e in detail.recent_activity}

    with pytest.raises(NotFound):
        await services.users.get_user(admins["ua"], "missing")


async def test_update_user_records_before_and_after(services, admins, make_user, audit_entries):
    user = await make_user("omar", [READER])
    updated = await services.users.update_user(
        admins["ua"], user.id, email="omar@new.example", is_suspended=True
    )
    assert updated.email == "omar@new.example"
    [entry] = await audit_entries(user.id)
    assert entry.before["email"] == "omar@corp.example"
    assert entry.after["is_suspended"] is True


async def test_update_user_validation(services, admins, make_user):
    user = await make_user("pia", [READER])
    await make_user("quinn")
    with pytest.raises(DuplicateIdentity):
        await services.users.update_user(admins["ua"], user.id, username="quinn")
    with pytest.raises(ValidationFailed):
        await services.users.update_user(admins["ua"], user.id, session_timeout_hours=48)
    with pytest.raises(SelfActionForbidden):
        await services.users.update_user(admins["ua"], admins["ua"].id, is_active=False)


async def test_suspending_super_admin_respects_quorum(services, admins):
    with pytest.raises(QuorumViolation):
        await services.users.update_user(admins["root"], admins["root2"].id, is_suspended=True)


async def test_bulk_action_updates_all_and_audits_each(
    services, admins, make_user, audit_entries
):
    users = [await make_user(f"bulk{i}", [READER]) for i in range(4)]
    updated = await services.users.bulk_action(
        admins["ua"], [u.id for u in users], "suspend"
    )
    assert all(u.is_suspended for u in updated)
    for user in users:
        [entry] = await audit_entries(user.id)
        assert entry.action == "BULK_SUSPEND"
        assert entry.risk_score >= 0.3


async def test_bulk_action_is_all_or_nothing(services, admins, make_user):
    user = await make_user("rita", [READER])
    with pytest.raises(NotFound):
        await services.users.bulk_action(admins["ua"], [user.id, "missing"], "deactivate")
    async with services.store.transaction() as tx:
        assert (await tx.get_user(user.id)).is_active


async def test_bulk_action_excludes_self_and_guards_quorum(services, admins):
    with pytest.raises(SelfActionForbidden):
        await services.users.bulk_action(admins["ua"], [admins["ua"].id], "suspend")
    with pytest.raises(QuorumViolation):
        await services.users.bulk_action(admins["ua"], [admins["root"].id], "deactivate")


async def test_profile_is_self_service(services, make_user, principal_for, audit_entries):
    user = await make_user("sam", [READER])
    principal = await principal_for(user)
    summary = await services.users.get_profile(principal)
    assert summary.user.id == user.id

    updated = await services.users.update_profile(principal, first_name="Samuel")
    assert updated.first_name == "Samuel"
    [entry] = await audit_entries(user.id)
    assert entry.action == AuditAction.USER_PROFILE_UPDATED

    with pytest.raises(Unauthorized):
        await services.users.get_profile(None)
