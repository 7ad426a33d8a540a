"""Domain schemas. Request/response and validation."""

from dashboard_iam.domain.schemas.identity import (
    AuditEntryResponse,
    ChangeRequestResponse,
    LoginResponse,
    RoleResponse,
    UserResponse,
)

__all__ = [
    "AuditEntryResponse",
    "ChangeRequestResponse",
    "LoginResponse",
    "RoleResponse",
    "UserResponse",
]
