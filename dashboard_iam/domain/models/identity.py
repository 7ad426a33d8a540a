"""Identity domain model: users, roles, role assignments, permissions. No ORM."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from dashboard_iam.domain.exceptions import ValidationFailed


class Permission(str, Enum):
    """Closed set of grantable permissions. Unknown strings are rejected at role creation."""

    USER_CREATE = "user:create"
    USER_READ = "user:read"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_ROLES_UPDATE = "user:roles:update"
    USER_ROLES_REQUEST = "user:roles:request"
    ROLE_READ = "role:read"
    ROLE_CREATE = "role:create"
    ROLE_UPDATE = "role:update"
    ADMIN_AUDIT_READ = "admin:audit:read"
    ADMIN_ALL = "admin:*"
    DASHBOARD_READ = "dashboard:read"
    REPORTS_READ = "reports:read"
    PRODUCTS_READ = "products:read"
    CUSTOMERS_READ = "customers:read"
    PROFILE_UPDATE = "profile:update"


WILDCARD = Permission.ADMIN_ALL

SUPER_ADMIN = "SUPER_ADMIN"
USER_ADMIN = "USER_ADMIN"
READER = "READER"
EXTERNAL_USER = "EXTERNAL_USER"


def parse_permissions(values: Iterable[str]) -> FrozenSet[Permission]:
    """Validate raw permission strings against the closed enumeration."""
    parsed: set[Permission] = set()
    unknown: list[str] = []
    for value in values:
        try:
            parsed.add(Permission(value))
        except ValueError:
            unknown.append(value)
    if unknown:
        raise ValidationFailed(
            f"Unknown permission(s): {', '.join(sorted(unknown))}",
            issues=[f"unknown permission '{u}'" for u in sorted(unknown)],
        )
    return frozenset(parsed)


@dataclass
class User:
    """Identity record. `password_hash` never leaves the authentication path."""

    id: str
    username: str
    email: str
    password_hash: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    is_suspended: bool = False
    is_external: bool = False
    external_provider: Optional[str] = None
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    session_timeout_hours: int = 8
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def snapshot(self) -> dict:
        """Audit-safe view: everything except the credential hash."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_active": self.is_active,
            "is_suspended": self.is_suspended,
            "is_external": self.is_external,
        }


@dataclass
class Role:
    id: str
    name: str
    description: Optional[str] = None
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    is_active: bool = True
    created_at: Optional[datetime] = None

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": sorted(p.value for p in self.permissions),
            "is_active": self.is_active,
        }


@dataclass
class RoleAssignment:
    """User-to-role grant with provenance. Effective iff active and not expired."""

    id: str
    user_id: str
    role_id: str
    assigned_by: Optional[str]
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now
