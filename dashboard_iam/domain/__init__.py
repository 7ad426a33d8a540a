"""Domain layer: models, schemas, validators, exceptions. Pure business logic only."""

from dashboard_iam.domain.exceptions import (
    AccountLocked,
    DuplicateIdentity,
    Forbidden,
    IdentityError,
    NoProvisioningRule,
    NotFound,
    QuorumViolation,
    RateLimited,
    RequestNotPending,
    SelfActionForbidden,
    StoreError,
    Unauthorized,
    ValidationFailed,
)
from dashboard_iam.domain.models import (
    AuditLogEntry,
    ChangeRequest,
    PendingApproval,
    Permission,
    RequestStatus,
    Role,
    RoleAssignment,
    Session,
    User,
)

__all__ = [
    "AccountLocked",
    "AuditLogEntry",
    "ChangeRequest",
    "DuplicateIdentity",
    "Forbidden",
    "IdentityError",
    "NoProvisioningRule",
    "NotFound",
    "PendingApproval",
    "Permission",
    "QuorumViolation",
    "RateLimited",
    "RequestNotPending",
    "RequestStatus",
    "Role",
    "RoleAssignment",
    "SelfActionForbidden",
    "Session",
    "StoreError",
    "Unauthorized",
    "User",
    "ValidationFailed",
]
