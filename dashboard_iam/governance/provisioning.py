"""Just-in-time provisioning of externally authenticated identities. No FastAPI."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from dashboard_iam.application.identity_store import IdentityStore, IdentityTransaction
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import NoProvisioningRule, ValidationFailed
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.governance import (
    ClaimMapping,
    PendingApproval,
    ProvisioningRule,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import Role, RoleAssignment, User
from dashboard_iam.domain.validators.identity_validator import email_domain
from dashboard_iam.governance.anomaly_scorer import AnomalyScorer, ScoringContext
from dashboard_iam.governance.audit_trail import (
    AuditAction,
    AuditTrailRecorder,
    EntityType,
)

logger = logging.getLogger(__name__)

JIT_ACTOR_ID = "system:jit"


def rules_from_settings(configs: Iterable[Any]) -> list[ProvisioningRule]:
    """Build immutable rules from ProvisioningRuleConfig entries."""
    return [
        ProvisioningRule(
            provider=c.provider,
            domain=c.domain.lower(),
            claim_mappings=tuple(
                ClaimMapping(claim=m.claim, value=m.value, role=m.role) for m in c.claim_mappings
            ),
            default_role=c.default_role,
            requires_approval=c.requires_approval,
        )
        for c in configs
    ]


def resolve_rule(
    rules: Iterable[ProvisioningRule], provider: str, domain: str
) -> ProvisioningRule:
    """Exact domain beats the `*` wildcard; no match is a hard failure."""
    candidates = [r for r in rules if r.provider.lower() == provider.lower()]
    for rule in candidates:
        if rule.domain == domain:
            return rule
    for rule in candidates:
        if rule.is_wildcard:
            return rule
    raise NoProvisioningRule(
        f"No provisioning rule for provider '{provider}' and domain '{domain}'",
        {"provider": provider, "domain": domain},
    )


def _claim_matches(claim_value: Any, expected: str) -> bool:
    if isinstance(claim_value, (list, tuple, set, frozenset)):
        return expected in {str(v) for v in claim_value}
    return claim_value is not None and str(claim_value) == expected


def mapped_role_names(rule: ProvisioningRule, claims: dict[str, Any]) -> list[str]:
    names: list[str] = []
    for mapping in rule.claim_mappings:
        if _claim_matches(claims.get(mapping.claim), mapping.value) and mapping.role not in names:
            names.append(mapping.role)
    if rule.default_role and rule.default_role not in names:
        names.append(rule.default_role)
    return names


@dataclass(frozen=True)
class ProvisioningResult:
    user: User
    created: bool
    pending_approval: Optional[PendingApproval] = None

    @property
    def awaiting_approval(self) -> bool:
        return self.pending_approval is not None


class JitProvisioningGate:
    """
    Creates a local identity for a verified external login. Either the user is created
    active with mapped roles, or inactive with a PendingApproval; never half of either.
    """

    def __init__(
        self,
        store: IdentityStore,
        recorder: AuditTrailRecorder,
        scorer: AnomalyScorer,
        rules: Iterable[ProvisioningRule],
        pending_approval_ttl_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._audit = recorder
        self._scorer = scorer
        self._rules = list(rules)
        self._ttl = timedelta(days=pending_approval_ttl_days)
        self._clock = clock

    async def provision_external_user(
        self,
        claims: dict[str, Any],
        provider: str,
        meta: Optional[RequestMeta] = None,
    ) -> ProvisioningResult:
        email = claims.get("email")
        if not email:
            raise ValidationFailed("External identity has no email claim")
        domain = email_domain(str(email))
        rule = resolve_rule(self._rules, provider, domain)

        now = self._clock()
        async with self._store.transaction() as tx:
            existing = await tx.find_user_by_email(str(email))
            if existing is not None:
                return ProvisioningResult(user=existing, created=False)

            roles = await self._resolve_roles(tx, mapped_role_names(rule, claims))
            user = User(
                id=new_id(),
                username=await self._unique_username(tx, claims, str(email)),
                email=str(email),
                password_hash=None,
                first_name=claims.get("given_name"),
                last_name=claims.get("family_name"),
                is_active=not rule.requires_approval,
                is_external=True,
                external_provider=provider,
                created_at=now,
                updated_at=now,
            )
            await tx.add_user(user)

            approval: Optional[PendingApproval] = None
            if rule.requires_approval:
                approval = PendingApproval(
                    id=new_id(),
                    user_id=user.id,
                    provider=provider,
                    email=user.email,
                    raw_claims=dict(claims),
                    proposed_role_ids=[r.id for r in roles],
                    status=RequestStatus.PENDING,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
                await tx.add_pending_approval(approval)
            else:
                for role in roles:
                    await tx.add_assignment(
                        RoleAssignment(
                            id=new_id(),
                            user_id=user.id,
                            role_id=role.id,
                            assigned_by=JIT_ACTOR_ID,
                            assigned_at=now,
                        )
                    )

            after = {**user.snapshot(), "role_ids": sorted(r.id for r in roles)}
            if approval is not None:
                after["pending_approval_id"] = approval.id
            risk = self._scorer.score(
                JIT_ACTOR_ID,
                AuditAction.USER_PROVISIONED,
                ScoringContext(
                    occurred_at=now,
                    proposed_role_ids=frozenset() if approval else frozenset(r.id for r in roles),
                ),
            )
            await self._audit.record(
                tx,
                actor_id=JIT_ACTOR_ID,
                action=AuditAction.USER_PROVISIONED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                after=after,
                summary=f"JIT via {provider} ({rule.domain})",
                request_meta=meta,
                risk=risk,
            )
        logger.info(
            "external_user_provisioned",
            extra={
                "user_id": user.id,
                "provider": provider,
                "domain": domain,
                "awaiting_approval": approval is not None,
            },
        )
        return ProvisioningResult(user=user, created=True, pending_approval=approval)

    async def _resolve_roles(self, tx: IdentityTransaction, names: list[str]) -> list[Role]:
        roles: list[Role] = []
        for name in names:
            role = await tx.get_role_by_name(name)
            if role is None or not role.is_active:
                logger.warning("provisioning_role_missing", extra={"role": name})
                continue
            roles.append(role)
        return roles

    @staticmethod
    async def _unique_username(
        tx: IdentityTransaction, claims: dict[str, Any], email: str
    ) -> str:
        base = str(claims.get("preferred_username") or email.split("@", 1)[0])
        candidate, suffix = base, 1
        while await tx.find_user_by_username(candidate) is not None:
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate
