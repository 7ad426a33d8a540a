"""JIT provisioning: rule resolution, claim mapping, approval gate, idempotent re-login."""

import pytest

from dashboard_iam.config.settings import ClaimRoleMapping, ProvisioningRuleConfig
from dashboard_iam.domain.exceptions import (
    Forbidden,
    NoProvisioningRule,
    RequestNotPending,
    ValidationFailed,
)
from dashboard_iam.domain.models.governance import RequestStatus
from dashboard_iam.domain.models.identity import EXTERNAL_USER, READER, SUPER_ADMIN, USER_ADMIN
from dashboard_iam.governance.anomaly_scorer import AnomalyScorer
from dashboard_iam.governance.audit_trail import AuditAction
from dashboard_iam.governance.change_governance import effective_role_ids
from dashboard_iam.governance.provisioning import (
    JIT_ACTOR_ID,
    JitProvisioningGate,
    mapped_role_names,
    resolve_rule,
    rules_from_settings,
)

RULES = rules_from_settings(
    [
        ProvisioningRuleConfig(
            provider="google",
            domain="Partner.COM",
            claim_mappings=[ClaimRoleMapping(claim="groups", value="analysts", role=READER)],
        ),
        ProvisioningRuleConfig(provider="google", domain="*", requires_approval=True),
    ]
)


@pytest.fixture
def gate(services, clock):
    return JitProvisioningGate(
        services.store, services.recorder, AnomalyScorer(), RULES, clock=clock
    )


def test_exact_domain_beats_wildcard():
    assert resolve_rule(RULES, "google", "partner.com").domain == "partner.com"
    assert resolve_rule(RULES, "GOOGLE", "other.org").is_wildcard


def test_no_rule_for_provider_fails():
    with pytest.raises(NoProvisioningRule):
        resolve_rule(RULES, "okta", "partner.com")


def test_claim_mapping_matches_scalar_or_list():
    rule = RULES[0]
    assert mapped_role_names(rule, {"groups": ["x", "analysts"]}) == [READER, EXTERNAL_USER]
    assert mapped_role_names(rule, {"groups": "analysts"}) == [READER, EXTERNAL_USER]
    assert mapped_role_names(rule, {"groups": "sales"}) == [EXTERNAL_USER]


async def test_unknown_domain_without_wildcard_rejected(services, clock):
    gate = JitProvisioningGate(
        services.store, services.recorder, AnomalyScorer(), RULES[:1], clock=clock
    )
    with pytest.raises(NoProvisioningRule):
        await gate.provision_external_user({"email": "eve@unknown.biz"}, "google")


async def test_missing_email_claim_rejected(gate):
    with pytest.raises(ValidationFailed):
        await gate.provision_external_user({"sub": "123"}, "google")


async def test_matched_rule_creates_active_user_with_mapped_roles(
    gate, services, clock, role_id, audit_entries
):
    result = await gate.provision_external_user(
        {"email": "ana@partner.com", "groups": ["analysts"], "given_name": "Ana"}, "google"
    )
    assert result.created and not result.awaiting_approval
    user = result.user
    assert user.is_active and user.is_external and user.password_hash is None
    assert user.username == "ana"
    async with services.store.transaction() as tx:
        roles = await effective_role_ids(tx, user.id, clock())
    assert roles == sorted([await role_id(READER), await role_id(EXTERNAL_USER)])

    [entry] = await audit_entries(user.id)
    assert entry.action == AuditAction.USER_PROVISIONED
    assert entry.actor_id == JIT_ACTOR_ID


async def test_approval_rule_creates_inactive_user_and_pending_approval(
    gate, services, clock, make_user, principal_for
):
    result = await gate.provision_external_user({"email": "bo@other.org"}, "google")
    assert result.awaiting_approval
    assert not result.user.is_active
    async with services.store.transaction() as tx:
        assert await effective_role_ids(tx, result.user.id, clock()) == []
        [approval] = await tx.list_pending_approvals(RequestStatus.PENDING)
    assert approval.user_id == result.user.id

    root = await principal_for(await make_user("root", [SUPER_ADMIN]))
    decided = await services.governance.process_pending_approval(root, approval.id, "approve")
    assert decided.status == RequestStatus.APPROVED
    async with services.store.transaction() as tx:
        user = await tx.get_user(result.user.id)
        roles = await effective_role_ids(tx, user.id, clock())
    assert user.is_active
    assert roles == approval.proposed_role_ids


async def test_pending_approval_expires_after_ttl(gate, services, clock, make_user, principal_for):
    result = await gate.provision_external_user({"email": "cy@other.org"}, "google")
    root = await principal_for(await make_user("root", [SUPER_ADMIN]))
    clock.advance(days=8)
    with pytest.raises(RequestNotPending):
        await services.governance.process_pending_approval(
            root, result.pending_approval.id, "approve"
        )
    async with services.store.transaction() as tx:
        assert not (await tx.get_user(result.user.id)).is_active


async def test_existing_user_returned_unchanged(gate, audit_entries):
    first = await gate.provision_external_user({"email": "ana@partner.com"}, "google")
    second = await gate.provision_external_user(
        {"email": "ana@partner.com", "groups": ["analysts"]}, "google"
    )
    assert not second.created
    assert second.user.id == first.user.id
    assert len(await audit_entries(first.user.id)) == 1


async def test_username_collision_gets_suffix(gate, make_user):
    await make_user("ana")
    result = await gate.provision_external_user({"email": "ana@partner.com"}, "google")
    assert result.user.username == "ana2"


async def test_user_admin_cannot_activate_user_awaiting_approval(
    gate, services, make_user, principal_for
):
    result = await gate.provision_external_user({"email": "x@other.org"}, "google")
    ua = await principal_for(await make_user("ua", [USER_ADMIN]))

    with pytest.raises(Forbidden):
        await services.users.update_user(ua, result.user.id, is_active=True)
    with pytest.raises(Forbidden):
        await services.users.bulk_action(ua, [result.user.id], "activate")

    async with services.store.transaction() as tx:
        assert not (await tx.get_user(result.user.id)).is_active
        approval = await tx.get_pending_approval(result.pending_approval.id)
    assert approval.status == RequestStatus.PENDING


async def test_user_fields_still_editable_while_awaiting_approval(
    gate, services, make_user, principal_for
):
    result = await gate.provision_external_user({"email": "dee@other.org"}, "google")
    ua = await principal_for(await make_user("ua", [USER_ADMIN]))
    user = await services.users.update_user(ua, result.user.id, first_name="Dee")
    assert user.first_name == "Dee"
    assert not user.is_active
