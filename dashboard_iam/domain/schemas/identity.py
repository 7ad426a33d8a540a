"""Pydantic schemas for the identity API. Strict validation, no DB or infrastructure."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from dashboard_iam.domain.models.audit import AuditLogEntry
from dashboard_iam.domain.models.governance import ChangeRequest, PendingApproval
from dashboard_iam.domain.models.identity import Role, User
from dashboard_iam.domain.models.session import Session


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    """`username` accepts either the username or the email address."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class CreateUserRequest(RegisterRequest):
    roles: List[str] = Field(default_factory=list, description="Role names; READER when empty")


class UpdateUserRequest(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=64)
    email: Optional[str] = Field(None, min_length=3, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None
    is_suspended: Optional[bool] = None
    session_timeout_hours: Optional[int] = Field(None, ge=1, le=24)


class UpdateUserRolesRequest(BaseModel):
    role_ids: List[str]
    justification: str
    emergency: bool = False


class BulkUserActionRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)
    action: Literal["activate", "suspend", "deactivate"]


class DecisionRequest(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class CreateRoleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)

    @field_validator("permissions")
    @classmethod
    def permissions_must_be_unique(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


class UpdateRoleRequest(BaseModel):
    description: Optional[str] = None
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    permissions: List[str]
    is_active: bool

    @classmethod
    def from_domain(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=sorted(p.value for p in role.permissions),
            is_active=role.is_active,
        )


class UserResponse(BaseModel):
    """Never carries the password hash."""

    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    is_suspended: bool
    is_external: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    roles: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, user: User, roles: Optional[List[Role]] = None) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_suspended=user.is_suspended,
            is_external=user.is_external,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            roles=sorted(r.name for r in roles or []),
        )


class UserPageResponse(BaseModel):
    items: List[UserResponse]
    total: int
    page: int
    limit: int


class SessionResponse(BaseModel):
    id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool

    @classmethod
    def from_domain(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            created_at=session.created_at,
            expires_at=session.expires_at,
            last_activity_at=session.last_activity_at,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            is_active=session.is_active,
        )


class AuditEntryResponse(BaseModel):
    id: str
    actor_id: str
    target_user_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    risk_score: float = Field(..., ge=0.0, le=1.0)
    is_anomalous: bool
    timestamp: datetime

    @classmethod
    def from_domain(cls, entry: AuditLogEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            actor_id=entry.actor_id,
            target_user_id=entry.target_user_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            before=entry.before,
            after=entry.after,
            summary=entry.summary,
            ip_address=entry.request_meta.ip_address,
            user_agent=entry.request_meta.user_agent,
            session_id=entry.request_meta.session_id,
            risk_score=entry.risk_score,
            is_anomalous=entry.is_anomalous,
            timestamp=entry.timestamp,
        )


class AuditPageResponse(BaseModel):
    items: List[AuditEntryResponse]
    total: int
    page: int
    limit: int
    pages: int


class UserDetailResponse(BaseModel):
    user: UserResponse
    roles: List[RoleResponse]
    recent_activity: List[AuditEntryResponse]
    active_sessions: List[SessionResponse]


class ProfileResponse(BaseModel):
    user: UserResponse
    permissions: List[str]


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse
    permissions: List[str]


class ChangeRequestResponse(BaseModel):
    id: str
    requester_id: str
    target_user_id: str
    change_type: str
    proposed_changes: Dict[str, Any]
    current_values: Dict[str, Any]
    justification: str
    status: str
    emergency: bool
    risk_score: float
    is_anomalous: bool
    created_at: datetime
    expires_at: datetime
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    @classmethod
    def from_domain(cls, request: ChangeRequest) -> "ChangeRequestResponse":
        return cls(
            id=request.id,
            requester_id=request.requester_id,
            target_user_id=request.target_user_id,
            change_type=request.change_type.value,
            proposed_changes=request.proposed_changes,
            current_values=request.current_values,
            justification=request.justification,
            status=request.status.value,
            emergency=request.emergency,
            risk_score=request.risk_score,
            is_anomalous=request.is_anomalous,
            created_at=request.created_at,
            expires_at=request.expires_at,
            decided_by=request.decided_by,
            decided_at=request.decided_at,
            decision_reason=request.decision_reason,
        )


class RoleUpdateResponse(BaseModel):
    applied: bool
    role_ids: List[str]
    change_request: Optional[ChangeRequestResponse] = None


class PendingApprovalResponse(BaseModel):
    id: str
    user_id: str
    provider: str
    email: str
    proposed_role_ids: List[str]
    status: str
    created_at: datetime
    expires_at: datetime
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    @classmethod
    def from_domain(cls, approval: PendingApproval) -> "PendingApprovalResponse":
        return cls(
            id=approval.id,
            user_id=approval.user_id,
            provider=approval.provider,
            email=approval.email,
            proposed_role_ids=list(approval.proposed_role_ids),
            status=approval.status.value,
            created_at=approval.created_at,
            expires_at=approval.expires_at,
            decided_by=approval.decided_by,
            decided_at=approval.decided_at,
            decision_reason=approval.decision_reason,
        )
