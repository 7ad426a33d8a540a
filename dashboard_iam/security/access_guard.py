"""Access guard: pure permission/role checks that run before any mutation. No FastAPI."""

from dataclasses import dataclass
from typing import FrozenSet, Optional

from dashboard_iam.domain.exceptions import Forbidden, Unauthorized
from dashboard_iam.domain.models.identity import SUPER_ADMIN, Permission, User
from dashboard_iam.security.permissions import EffectiveGrants, has_permission


@dataclass(frozen=True)
class Principal:
    """Authenticated caller with the grants resolved for this request."""

    user: User
    session_id: Optional[str]
    grants: EffectiveGrants

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def permissions(self) -> FrozenSet[Permission]:
        return self.grants.permissions

    def has_permission(self, permission: Permission) -> bool:
        return has_permission(self.grants.permissions, permission)

    def has_direct_permission(self, permission: Permission) -> bool:
        """Literal grant only; the admin:* wildcard does not count."""
        return permission in self.grants.permissions

    def has_role(self, role_name: str) -> bool:
        return role_name in self.grants.role_names

    @property
    def is_super_admin(self) -> bool:
        return self.has_role(SUPER_ADMIN)


class AccessGuard:
    """Raise Unauthorized when there is no principal, Forbidden when the grant is missing."""

    def require_permission(
        self, principal: Optional[Principal], permission: Permission
    ) -> Principal:
        principal = self._require_principal(principal)
        if not principal.has_permission(permission):
            raise Forbidden(
                f"Missing permission '{permission.value}'",
                {"required": permission.value},
            )
        return principal

    def require_any_permission(
        self, principal: Optional[Principal], *permissions: Permission
    ) -> Principal:
        principal = self._require_principal(principal)
        if not any(principal.has_permission(p) for p in permissions):
            required = [p.value for p in permissions]
            raise Forbidden(
                f"Missing any of permissions {required}", {"required": required}
            )
        return principal

    def require_role(self, principal: Optional[Principal], role_name: str) -> Principal:
        principal = self._require_principal(principal)
        if not principal.has_role(role_name):
            raise Forbidden(f"Role '{role_name}' required", {"required": role_name})
        return principal

    @staticmethod
    def _require_principal(principal: Optional[Principal]) -> Principal:
        if principal is None:
            raise Unauthorized("Authentication required")
        return principal
