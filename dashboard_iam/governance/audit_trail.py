"""Immutable audit trail: append inside the mutating transaction, query for review. No FastAPI."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from dashboard_iam.application.identity_store import IdentityStore, IdentityTransaction
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.models.audit import (
    ZERO_RISK,
    AuditLogEntry,
    AuditQuery,
    HeuristicRiskScore,
    RequestMeta,
)
from dashboard_iam.domain.models.identity import SUPER_ADMIN, Permission
from dashboard_iam.security.access_guard import AccessGuard, Principal

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


class AuditAction:
    USER_CREATED = "USER_CREATED"
    USER_REGISTERED = "USER_REGISTERED"
    USER_UPDATED = "USER_UPDATED"
    USER_PROFILE_UPDATED = "USER_PROFILE_UPDATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_PURGED = "USER_PURGED"
    USER_ROLES_UPDATED = "USER_ROLES_UPDATED"
    USER_PROVISIONED = "USER_PROVISIONED"
    USER_ACTIVATED = "USER_ACTIVATED"
    BULK_PREFIX = "BULK_"
    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    CHANGE_REQUEST_CREATED = "CHANGE_REQUEST_CREATED"
    CHANGE_REQUEST_APPROVED = "CHANGE_REQUEST_APPROVED"
    CHANGE_REQUEST_REJECTED = "CHANGE_REQUEST_REJECTED"
    CHANGE_REQUEST_EXPIRED = "CHANGE_REQUEST_EXPIRED"
    PENDING_APPROVAL_APPROVED = "PENDING_APPROVAL_APPROVED"
    PENDING_APPROVAL_REJECTED = "PENDING_APPROVAL_REJECTED"
    PENDING_APPROVAL_EXPIRED = "PENDING_APPROVAL_EXPIRED"
    LOGIN_SUCCEEDED = "LOGIN_SUCCEEDED"
    LOGIN_FAILED = "LOGIN_FAILED"
    SESSION_REVOKED = "SESSION_REVOKED"
    SESSION_ENDED = "SESSION_ENDED"


# Administrative actions that count as recent privileged activity for risk scoring.
# Login, logout, self-service and system expiry entries are excluded.
PRIVILEGED_ACTIONS = frozenset(
    {
        AuditAction.USER_CREATED,
        AuditAction.USER_UPDATED,
        AuditAction.USER_DEACTIVATED,
        AuditAction.USER_PURGED,
        AuditAction.USER_ROLES_UPDATED,
        AuditAction.USER_ACTIVATED,
        AuditAction.BULK_PREFIX + "ACTIVATE",
        AuditAction.BULK_PREFIX + "SUSPEND",
        AuditAction.BULK_PREFIX + "DEACTIVATE",
        AuditAction.ROLE_CREATED,
        AuditAction.ROLE_UPDATED,
        AuditAction.CHANGE_REQUEST_CREATED,
        AuditAction.CHANGE_REQUEST_APPROVED,
        AuditAction.CHANGE_REQUEST_REJECTED,
        AuditAction.PENDING_APPROVAL_APPROVED,
        AuditAction.PENDING_APPROVAL_REJECTED,
        AuditAction.SESSION_REVOKED,
    }
)


class EntityType:
    USER = "USER"
    ROLE = "ROLE"
    CHANGE_REQUEST = "CHANGE_REQUEST"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SESSION = "SESSION"


@dataclass(frozen=True)
class AuditPage:
    entries: list[AuditLogEntry]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class AuditTrailRecorder:
    """
    Writes immutable audit entries through the caller's transaction, so an entry exists
    iff the mutation it describes committed. Marks entries anomalous above the threshold.
    """

    def __init__(
        self,
        anomaly_threshold: float = 0.7,
        clock: Callable = utc_now,
    ) -> None:
        self._threshold = anomaly_threshold
        self._clock = clock

    @property
    def anomaly_threshold(self) -> float:
        return self._threshold

    async def record(
        self,
        tx: IdentityTransaction,
        *,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
        summary: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
        risk: HeuristicRiskScore = ZERO_RISK,
        target_user_id: Optional[str] = None,
        force_anomalous: bool = False,
    ) -> AuditLogEntry:
        """Single append. Timestamp is UTC."""
        entry = AuditLogEntry(
            id=new_id(),
            actor_id=actor_id,
            target_user_id=target_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
            summary=summary,
            request_meta=request_meta or RequestMeta(),
            risk_score=risk.value,
            is_anomalous=force_anomalous or risk.is_anomalous(self._threshold),
            timestamp=self._clock(),
        )
        await tx.append_audit(entry)
        logger.info(
            "audit_recorded",
            extra={
                "audit_id": entry.id,
                "action": entry.action,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "risk_score": entry.risk_score,
                "is_anomalous": entry.is_anomalous,
            },
        )
        if entry.is_anomalous:
            logger.warning(
                "anomalous_action_flagged",
                extra={"audit_id": entry.id, "action": entry.action, "factors": list(risk.factors)},
            )
        return entry


class AuditTrailQueries:
    """Read side of the trail: guarded listing and anomaly review."""

    def __init__(
        self,
        store: IdentityStore,
        guard: AccessGuard,
        clock: Callable = utc_now,
    ) -> None:
        self._store = store
        self._guard = guard
        self._clock = clock

    async def list_entries(
        self,
        principal: Optional[Principal],
        query: AuditQuery,
        page: int = 1,
        limit: int = 50,
    ) -> AuditPage:
        self._guard.require_permission(principal, Permission.ADMIN_AUDIT_READ)
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        async with self._store.transaction() as tx:
            entries, total = await tx.list_audit(query, (page - 1) * limit, limit)
        return AuditPage(entries=entries, total=total, page=page, limit=limit)

    async def list_anomalies(
        self, principal: Optional[Principal], days: int = 7, limit: int = MAX_PAGE_SIZE
    ) -> list[AuditLogEntry]:
        """Anomalous entries in the window, riskiest first."""
        self._guard.require_role(principal, SUPER_ADMIN)
        query = AuditQuery(
            since=self._clock() - timedelta(days=days),
            anomalous_only=True,
            order_by_risk=True,
        )
        async with self._store.transaction() as tx:
            entries, _ = await tx.list_audit(query, 0, min(limit, MAX_PAGE_SIZE))
        return entries
