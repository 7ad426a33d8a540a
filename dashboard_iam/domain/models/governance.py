"""Change governance domain model: change requests, pending approvals, provisioning rules."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from dashboard_iam.domain.exceptions import RequestNotPending


class RequestStatus(str, Enum):
    """Lifecycle status shared by change requests and pending approvals."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# PENDING is the only non-terminal state.
_STATUS_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.EXPIRED}
    ),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}


def _validate_transition(request_id: str, current: RequestStatus, new: RequestStatus) -> None:
    if new not in _STATUS_TRANSITIONS.get(current, frozenset()):
        raise RequestNotPending(
            f"Request not pending: {request_id} (status={current.value})"
        )


class ChangeType(str, Enum):
    ROLE_SET_UPDATE = "ROLE_SET_UPDATE"


@dataclass
class ChangeRequest:
    """
    Queued proposal to replace a user's role set.
    Status must be changed only via transition_to() to enforce lifecycle rules.
    """

    id: str
    requester_id: str
    target_user_id: str
    change_type: ChangeType
    proposed_changes: Dict[str, Any]
    current_values: Dict[str, Any]
    justification: str
    status: RequestStatus
    created_at: datetime
    expires_at: datetime
    emergency: bool = False
    risk_score: float = 0.0
    is_anomalous: bool = False
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == RequestStatus.PENDING and self.expires_at <= now

    def transition_to(
        self,
        new_status: RequestStatus,
        *,
        at: datetime,
        by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        _validate_transition(self.id, self.status, new_status)
        self.status = new_status
        self.decided_at = at
        self.decided_by = by
        self.decision_reason = reason

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "target_user_id": self.target_user_id,
            "proposed_changes": self.proposed_changes,
            "emergency": self.emergency,
        }


@dataclass
class PendingApproval:
    """JIT-provisioned identity awaiting manual review. The user row exists but is inactive."""

    id: str
    user_id: str
    provider: str
    email: str
    raw_claims: Dict[str, Any]
    proposed_role_ids: list[str]
    status: RequestStatus
    created_at: datetime
    expires_at: datetime
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == RequestStatus.PENDING and self.expires_at <= now

    def transition_to(
        self,
        new_status: RequestStatus,
        *,
        at: datetime,
        by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        _validate_transition(self.id, self.status, new_status)
        self.status = new_status
        self.decided_at = at
        self.decided_by = by
        self.decision_reason = reason

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "user_id": self.user_id,
            "proposed_role_ids": list(self.proposed_role_ids),
        }


@dataclass(frozen=True)
class ClaimMapping:
    claim: str
    value: str
    role: str


@dataclass(frozen=True)
class ProvisioningRule:
    """Static JIT configuration: provider + email domain (or `*`) -> roles."""

    provider: str
    domain: str
    claim_mappings: tuple[ClaimMapping, ...] = field(default_factory=tuple)
    default_role: Optional[str] = None
    requires_approval: bool = False

    @property
    def is_wildcard(self) -> bool:
        return self.domain == "*"
