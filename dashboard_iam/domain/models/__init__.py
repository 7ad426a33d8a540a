"""Domain models. Pure business entities."""

from dashboard_iam.domain.models.audit import (
    AuditLogEntry,
    AuditQuery,
    HeuristicRiskScore,
    RequestMeta,
)
from dashboard_iam.domain.models.governance import (
    ChangeRequest,
    ChangeType,
    PendingApproval,
    ProvisioningRule,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import Permission, Role, RoleAssignment, User
from dashboard_iam.domain.models.session import Session

__all__ = [
    "AuditLogEntry",
    "AuditQuery",
    "ChangeRequest",
    "ChangeType",
    "HeuristicRiskScore",
    "PendingApproval",
    "Permission",
    "ProvisioningRule",
    "RequestMeta",
    "RequestStatus",
    "Role",
    "RoleAssignment",
    "Session",
    "User",
]
