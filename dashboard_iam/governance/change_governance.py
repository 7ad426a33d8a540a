"""Two-party change governance for privileged role changes and destructive user operations. No FastAPI."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from dashboard_iam.application.identity_store import IdentityStore, IdentityTransaction
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import (
    Forbidden,
    NotFound,
    QuorumViolation,
    RequestNotPending,
    SelfActionForbidden,
    ValidationFailed,
)
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.governance import (
    ChangeRequest,
    ChangeType,
    PendingApproval,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import (
    SUPER_ADMIN,
    Permission,
    Role,
    RoleAssignment,
    User,
)
from dashboard_iam.domain.validators.identity_validator import (
    validate_justification,
    validate_rejection_reason,
)
from dashboard_iam.governance.anomaly_scorer import (
    AnomalyScorer,
    ScoringContext,
    recent_privileged_actions,
)
from dashboard_iam.governance.audit_trail import (
    AuditAction,
    AuditTrailRecorder,
    EntityType,
)
from dashboard_iam.security.access_guard import AccessGuard, Principal

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"

APPROVE = "approve"
REJECT = "reject"
_DECISIONS = frozenset({APPROVE, REJECT})


@dataclass(frozen=True)
class GovernancePolicy:
    change_request_ttl_hours: int = 72
    pending_approval_ttl_days: int = 7
    min_justification_length: int = 10
    super_admin_quorum: int = 2

    @classmethod
    def from_settings(cls, settings) -> "GovernancePolicy":
        return cls(
            change_request_ttl_hours=settings.change_request_ttl_hours,
            pending_approval_ttl_days=settings.pending_approval_ttl_days,
            min_justification_length=settings.min_justification_length,
            super_admin_quorum=settings.super_admin_quorum,
        )


@dataclass(frozen=True)
class RoleUpdateOutcome:
    """Either the role set was applied now or a change request was queued."""

    applied: bool
    role_ids: list[str]
    change_request: Optional[ChangeRequest] = None


# --- Helpers shared with the identity service ---


async def effective_role_ids(
    tx: IdentityTransaction, user_id: str, now: datetime
) -> list[str]:
    seen: list[str] = []
    for assignment in await tx.list_assignments(user_id):
        if assignment.is_effective(now) and assignment.role_id not in seen:
            seen.append(assignment.role_id)
    return sorted(seen)


async def super_admin_holders(tx: IdentityTransaction, now: datetime) -> set[str]:
    """Active, unsuspended users with an effective SUPER_ADMIN assignment."""
    role = await tx.get_role_by_name(SUPER_ADMIN)
    if role is None:
        return set()
    holders: set[str] = set()
    for assignment in await tx.list_assignments_for_role(role.id):
        if not assignment.is_effective(now) or assignment.user_id in holders:
            continue
        user = await tx.get_user(assignment.user_id)
        if user is not None and user.is_active and not user.is_suspended:
            holders.add(user.id)
    return holders


async def ensure_super_admin_quorum(
    tx: IdentityTransaction,
    removing: Iterable[str],
    now: datetime,
    quorum: int,
) -> None:
    """Raise QuorumViolation if removing these users would leave fewer than `quorum` SUPER_ADMINs."""
    holders = await super_admin_holders(tx, now)
    affected = holders & set(removing)
    if affected and len(holders - affected) < quorum:
        raise QuorumViolation(
            f"At least {quorum} SUPER_ADMIN accounts must remain",
            {"super_admins": len(holders), "affected": sorted(affected)},
        )


async def ensure_not_awaiting_approval(tx: IdentityTransaction, user_ids: Iterable[str]) -> None:
    """JIT users with an open pending approval are activated only through that approval."""
    ids = set(user_ids)
    waiting = sorted(
        p.user_id
        for p in await tx.list_pending_approvals(RequestStatus.PENDING)
        if p.user_id in ids
    )
    if waiting:
        raise Forbidden(
            "User is awaiting provisioning approval; decide it via the pending approvals queue",
            {"user_ids": waiting},
        )


async def load_assignable_roles(
    tx: IdentityTransaction, role_ids: Iterable[str]
) -> list[Role]:
    """Every id must name an existing, active role."""
    roles: list[Role] = []
    missing: list[str] = []
    for role_id in role_ids:
        role = await tx.get_role(role_id)
        if role is None or not role.is_active:
            missing.append(role_id)
        else:
            roles.append(role)
    if missing:
        raise ValidationFailed(
            "Unknown or inactive role(s)",
            issues=[f"role '{r}' does not exist or is inactive" for r in missing],
        )
    return roles


def _dedupe(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for value in values:
        if value not in out:
            out.append(value)
    return out


class ChangeGovernanceEngine:
    """
    Decides whether a privileged change applies immediately or is queued for a second
    SUPER_ADMIN. Requests are never approved by their requester, never decided twice,
    and read as expired once their deadline passes. Every applied mutation writes
    exactly one audit entry in the same transaction.
    """

    def __init__(
        self,
        store: IdentityStore,
        guard: AccessGuard,
        recorder: AuditTrailRecorder,
        scorer: AnomalyScorer,
        policy: GovernancePolicy = GovernancePolicy(),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._guard = guard
        self._audit = recorder
        self._scorer = scorer
        self._policy = policy
        self._clock = clock

    # --- Role changes ---

    async def update_user_roles(
        self,
        principal: Optional[Principal],
        target_user_id: str,
        role_ids: Iterable[str],
        justification: Optional[str],
        *,
        emergency: bool = False,
        meta: Optional[RequestMeta] = None,
    ) -> RoleUpdateOutcome:
        """
        SUPER_ADMIN with a literal user:roles:update grant (or any SUPER_ADMIN in an
        emergency) applies now; everyone else queues a change request.
        """
        principal = self._guard.require_any_permission(
            principal, Permission.USER_ROLES_UPDATE, Permission.USER_ROLES_REQUEST
        )
        justification = validate_justification(
            justification, self._policy.min_justification_length
        )
        role_ids = _dedupe(role_ids)
        if target_user_id == principal.id and not principal.is_super_admin:
            raise SelfActionForbidden("You cannot change your own roles")

        now = self._clock()
        async with self._store.transaction() as tx:
            target = await tx.get_user(target_user_id, for_update=True)
            if target is None:
                raise NotFound(f"User not found: {target_user_id}")
            await load_assignable_roles(tx, role_ids)

            direct = principal.is_super_admin and (
                emergency or principal.has_direct_permission(Permission.USER_ROLES_UPDATE)
            )
            if direct:
                await self.execute_role_update(
                    tx,
                    actor_id=principal.id,
                    target=target,
                    role_ids=role_ids,
                    justification=justification,
                    meta=meta,
                    emergency=emergency,
                )
                return RoleUpdateOutcome(applied=True, role_ids=role_ids)

            current = await effective_role_ids(tx, target.id, now)
            risk = self._scorer.score(
                principal.id,
                AuditAction.CHANGE_REQUEST_CREATED,
                ScoringContext(
                    occurred_at=now,
                    previous_role_ids=frozenset(current),
                    proposed_role_ids=frozenset(role_ids),
                    recent_privileged_actions=await recent_privileged_actions(
                        tx, principal.id, now
                    ),
                ),
            )
            request = ChangeRequest(
                id=new_id(),
                requester_id=principal.id,
                target_user_id=target.id,
                change_type=ChangeType.ROLE_SET_UPDATE,
                proposed_changes={"role_ids": role_ids},
                current_values={"role_ids": current},
                justification=justification,
                status=RequestStatus.PENDING,
                created_at=now,
                expires_at=now + timedelta(hours=self._policy.change_request_ttl_hours),
                emergency=emergency,
                risk_score=risk.value,
                is_anomalous=risk.is_anomalous(self._audit.anomaly_threshold),
            )
            await tx.add_change_request(request)
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.CHANGE_REQUEST_CREATED,
                entity_type=EntityType.CHANGE_REQUEST,
                entity_id=request.id,
                target_user_id=target.id,
                after=request.snapshot(),
                summary=justification,
                request_meta=meta,
                risk=risk,
            )
        logger.info(
            "change_request_created",
            extra={"request_id": request.id, "target_user_id": target.id, "risk_score": risk.value},
        )
        return RoleUpdateOutcome(applied=False, role_ids=role_ids, change_request=request)

    async def execute_role_update(
        self,
        tx: IdentityTransaction,
        *,
        actor_id: str,
        target: User,
        role_ids: list[str],
        justification: str,
        meta: Optional[RequestMeta] = None,
        emergency: bool = False,
        change_request_id: Optional[str] = None,
    ) -> None:
        """
        Replace the target's role set: deactivate every current assignment, insert the
        new ones, record one audit entry. Runs inside the caller's transaction with the
        target row already locked.
        """
        now = self._clock()
        await load_assignable_roles(tx, role_ids)
        before = await effective_role_ids(tx, target.id, now)

        super_admin = await tx.get_role_by_name(SUPER_ADMIN)
        if super_admin is not None and super_admin.id in before and super_admin.id not in role_ids:
            await ensure_super_admin_quorum(tx, [target.id], now, self._policy.super_admin_quorum)

        await tx.deactivate_assignments(target.id)
        for role_id in role_ids:
            await tx.add_assignment(
                RoleAssignment(
                    id=new_id(),
                    user_id=target.id,
                    role_id=role_id,
                    assigned_by=actor_id,
                    assigned_at=now,
                )
            )

        risk = self._scorer.score(
            actor_id,
            AuditAction.USER_ROLES_UPDATED,
            ScoringContext(
                occurred_at=now,
                previous_role_ids=frozenset(before),
                proposed_role_ids=frozenset(role_ids),
                recent_privileged_actions=await recent_privileged_actions(tx, actor_id, now),
            ),
        )
        after = {"role_ids": sorted(role_ids)}
        if change_request_id is not None:
            after["change_request_id"] = change_request_id
        if emergency:
            after["emergency"] = True
        await self._audit.record(
            tx,
            actor_id=actor_id,
            action=AuditAction.USER_ROLES_UPDATED,
            entity_type=EntityType.USER,
            entity_id=target.id,
            target_user_id=target.id,
            before={"role_ids": before},
            after=after,
            summary=justification,
            request_meta=meta,
            risk=risk,
            force_anomalous=emergency,
        )
        logger.info(
            "user_roles_updated",
            extra={"target_user_id": target.id, "role_ids": sorted(role_ids), "emergency": emergency},
        )

    async def process_change_request(
        self,
        principal: Optional[Principal],
        request_id: str,
        action: str,
        reason: Optional[str] = None,
        *,
        meta: Optional[RequestMeta] = None,
    ) -> ChangeRequest:
        """Approve (apply the proposed role set) or reject a pending request."""
        principal = self._guard.require_role(principal, SUPER_ADMIN)
        if action not in _DECISIONS:
            raise ValidationFailed(f"action must be one of {sorted(_DECISIONS)}")
        if action == REJECT:
            reason = validate_rejection_reason(reason)

        now = self._clock()
        expired: Optional[ChangeRequest] = None
        async with self._store.transaction() as tx:
            request = await tx.get_change_request(request_id, for_update=True)
            if request is None:
                raise NotFound(f"Change request not found: {request_id}")
            if request.is_expired(now):
                await self._expire_change_request(tx, request, now)
                expired = request
            else:
                if request.status != RequestStatus.PENDING:
                    raise RequestNotPending(
                        f"Request not pending: {request_id} (status={request.status.value})"
                    )
                if request.requester_id == principal.id:
                    raise SelfActionForbidden("You cannot decide your own change request")

                if action == APPROVE:
                    target = await tx.get_user(request.target_user_id, for_update=True)
                    if target is None:
                        raise NotFound(f"User not found: {request.target_user_id}")
                    await self.execute_role_update(
                        tx,
                        actor_id=principal.id,
                        target=target,
                        role_ids=list(request.proposed_changes.get("role_ids", [])),
                        justification=request.justification,
                        meta=meta,
                        emergency=request.emergency,
                        change_request_id=request.id,
                    )
                    audit_action = AuditAction.CHANGE_REQUEST_APPROVED
                    request.transition_to(RequestStatus.APPROVED, at=now, by=principal.id, reason=reason)
                else:
                    audit_action = AuditAction.CHANGE_REQUEST_REJECTED
                    request.transition_to(RequestStatus.REJECTED, at=now, by=principal.id, reason=reason)
                await tx.save_change_request(request)
                await self._audit.record(
                    tx,
                    actor_id=principal.id,
                    action=audit_action,
                    entity_type=EntityType.CHANGE_REQUEST,
                    entity_id=request.id,
                    target_user_id=request.target_user_id,
                    before={"status": RequestStatus.PENDING.value},
                    after={"status": request.status.value},
                    summary=reason,
                    request_meta=meta,
                )
        # Raised after commit so the expiry itself persists.
        if expired is not None:
            raise RequestNotPending(f"Change request expired: {request_id}")
        logger.info(
            "change_request_decided",
            extra={"request_id": request.id, "status": request.status.value},
        )
        return request

    async def list_change_requests(
        self,
        principal: Optional[Principal],
        status: Optional[RequestStatus] = RequestStatus.PENDING,
    ) -> list[ChangeRequest]:
        self._guard.require_role(principal, SUPER_ADMIN)
        now = self._clock()
        async with self._store.transaction() as tx:
            for request in await tx.list_change_requests(RequestStatus.PENDING):
                if request.is_expired(now):
                    await self._expire_change_request(tx, request, now)
            return await tx.list_change_requests(status)

    async def _expire_change_request(
        self, tx: IdentityTransaction, request: ChangeRequest, now: datetime
    ) -> None:
        request.transition_to(RequestStatus.EXPIRED, at=now, reason="expired")
        await tx.save_change_request(request)
        await self._audit.record(
            tx,
            actor_id=SYSTEM_ACTOR_ID,
            action=AuditAction.CHANGE_REQUEST_EXPIRED,
            entity_type=EntityType.CHANGE_REQUEST,
            entity_id=request.id,
            target_user_id=request.target_user_id,
            before={"status": RequestStatus.PENDING.value},
            after={"status": RequestStatus.EXPIRED.value},
        )

    # --- Pending approvals (JIT) ---

    async def list_pending_approvals(
        self,
        principal: Optional[Principal],
        status: Optional[RequestStatus] = RequestStatus.PENDING,
    ) -> list[PendingApproval]:
        self._guard.require_role(principal, SUPER_ADMIN)
        now = self._clock()
        async with self._store.transaction() as tx:
            for approval in await tx.list_pending_approvals(RequestStatus.PENDING):
                if approval.is_expired(now):
                    await self._expire_pending_approval(tx, approval, now)
            return await tx.list_pending_approvals(status)

    async def process_pending_approval(
        self,
        principal: Optional[Principal],
        approval_id: str,
        action: str,
        reason: Optional[str] = None,
        *,
        meta: Optional[RequestMeta] = None,
    ) -> PendingApproval:
        """Approve activates the provisioned user with the proposed roles; reject leaves it inactive."""
        principal = self._guard.require_role(principal, SUPER_ADMIN)
        if action not in _DECISIONS:
            raise ValidationFailed(f"action must be one of {sorted(_DECISIONS)}")
        if action == REJECT:
            reason = validate_rejection_reason(reason)

        now = self._clock()
        expired: Optional[PendingApproval] = None
        async with self._store.transaction() as tx:
            approval = await tx.get_pending_approval(approval_id, for_update=True)
            if approval is None:
                raise NotFound(f"Pending approval not found: {approval_id}")
            if approval.is_expired(now):
                await self._expire_pending_approval(tx, approval, now)
                expired = approval
            else:
                if approval.status != RequestStatus.PENDING:
                    raise RequestNotPending(
                        f"Request not pending: {approval_id} (status={approval.status.value})"
                    )
                if approval.user_id == principal.id:
                    raise SelfActionForbidden("You cannot approve your own account")

                if action == APPROVE:
                    user = await tx.get_user(approval.user_id, for_update=True)
                    if user is None:
                        raise NotFound(f"User not found: {approval.user_id}")
                    await self._activate_provisioned_user(tx, principal.id, user, approval, meta)
                    audit_action = AuditAction.PENDING_APPROVAL_APPROVED
                    approval.transition_to(RequestStatus.APPROVED, at=now, by=principal.id, reason=reason)
                else:
                    audit_action = AuditAction.PENDING_APPROVAL_REJECTED
                    approval.transition_to(RequestStatus.REJECTED, at=now, by=principal.id, reason=reason)
                await tx.save_pending_approval(approval)
                await self._audit.record(
                    tx,
                    actor_id=principal.id,
                    action=audit_action,
                    entity_type=EntityType.PENDING_APPROVAL,
                    entity_id=approval.id,
                    target_user_id=approval.user_id,
                    before={"status": RequestStatus.PENDING.value},
                    after={"status": approval.status.value},
                    summary=reason,
                    request_meta=meta,
                )
        if expired is not None:
            raise RequestNotPending(f"Pending approval expired: {approval_id}")
        return approval

    async def _activate_provisioned_user(
        self,
        tx: IdentityTransaction,
        actor_id: str,
        user: User,
        approval: PendingApproval,
        meta: Optional[RequestMeta],
    ) -> None:
        now = self._clock()
        roles = await load_assignable_roles(tx, approval.proposed_role_ids)
        before = user.snapshot()
        user.is_active = True
        user.updated_at = now
        await tx.save_user(user)
        for role in roles:
            await tx.add_assignment(
                RoleAssignment(
                    id=new_id(),
                    user_id=user.id,
                    role_id=role.id,
                    assigned_by=actor_id,
                    assigned_at=now,
                )
            )
        risk = self._scorer.score(
            actor_id,
            AuditAction.USER_ACTIVATED,
            ScoringContext(
                occurred_at=now,
                proposed_role_ids=frozenset(r.id for r in roles),
                recent_privileged_actions=await recent_privileged_actions(tx, actor_id, now),
            ),
        )
        await self._audit.record(
            tx,
            actor_id=actor_id,
            action=AuditAction.USER_ACTIVATED,
            entity_type=EntityType.USER,
            entity_id=user.id,
            target_user_id=user.id,
            before=before,
            after={**user.snapshot(), "role_ids": sorted(r.id for r in roles)},
            summary=f"JIT approval {approval.id}",
            request_meta=meta,
            risk=risk,
        )

    async def _expire_pending_approval(
        self, tx: IdentityTransaction, approval: PendingApproval, now: datetime
    ) -> None:
        approval.transition_to(RequestStatus.EXPIRED, at=now, reason="expired")
        await tx.save_pending_approval(approval)
        await self._audit.record(
            tx,
            actor_id=SYSTEM_ACTOR_ID,
            action=AuditAction.PENDING_APPROVAL_EXPIRED,
            entity_type=EntityType.PENDING_APPROVAL,
            entity_id=approval.id,
            target_user_id=approval.user_id,
            before={"status": RequestStatus.PENDING.value},
            after={"status": RequestStatus.EXPIRED.value},
        )

    async def expire_stale_requests(self) -> int:
        """Sweep: mark every overdue change request and pending approval EXPIRED."""
        now = self._clock()
        count = 0
        async with self._store.transaction() as tx:
            for request in await tx.list_change_requests(RequestStatus.PENDING):
                if request.is_expired(now):
                    await self._expire_change_request(tx, request, now)
                    count += 1
            for approval in await tx.list_pending_approvals(RequestStatus.PENDING):
                if approval.is_expired(now):
                    await self._expire_pending_approval(tx, approval, now)
                    count += 1
        if count:
            logger.info("stale_requests_expired", extra={"count": count})
        return count

    # --- Destructive user operations ---

    async def delete_user(
        self,
        principal: Optional[Principal],
        target_user_id: str,
        *,
        hard: bool = False,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        """
        Soft delete deactivates the user and every assignment; hard delete (SUPER_ADMIN
        only) purges the user. Self-deletion and dropping below the SUPER_ADMIN quorum fail.
        """
        if principal is not None and target_user_id == principal.id:
            raise SelfActionForbidden("You cannot delete your own account")
        principal = self._guard.require_permission(principal, Permission.USER_DELETE)
        if hard:
            self._guard.require_role(principal, SUPER_ADMIN)

        now = self._clock()
        async with self._store.transaction() as tx:
            target = await tx.get_user(target_user_id, for_update=True)
            if target is None:
                raise NotFound(f"User not found: {target_user_id}")
            await ensure_super_admin_quorum(tx, [target.id], now, self._policy.super_admin_quorum)
            before = {**target.snapshot(), "role_ids": await effective_role_ids(tx, target.id, now)}

            if hard:
                await tx.purge_user(target.id)
                action, after = AuditAction.USER_PURGED, None
            else:
                target.is_active = False
                target.updated_at = now
                await tx.save_user(target)
                await tx.deactivate_assignments(target.id)
                action, after = AuditAction.USER_DEACTIVATED, {**target.snapshot(), "role_ids": []}
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=action,
                entity_type=EntityType.USER,
                entity_id=target.id,
                target_user_id=target.id,
                before=before,
                after=after,
                request_meta=meta,
            )
        logger.info("user_deleted", extra={"target_user_id": target_user_id, "hard": hard})
