"""Permission resolution: effective roles and permissions from role assignments. No FastAPI."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, FrozenSet, Optional

from dashboard_iam.application.identity_store import IdentityStore, IdentityTransaction
from dashboard_iam.domain.clock import utc_now
from dashboard_iam.domain.models.identity import WILDCARD, Permission, Role


@dataclass(frozen=True)
class EffectiveGrants:
    """Roles from active, unexpired assignments and the union of their permissions."""

    roles: tuple[Role, ...]
    permissions: FrozenSet[Permission]

    @property
    def role_names(self) -> FrozenSet[str]:
        return frozenset(r.name for r in self.roles)

    @property
    def role_ids(self) -> FrozenSet[str]:
        return frozenset(r.id for r in self.roles)


def has_permission(granted: FrozenSet[Permission], required: Permission) -> bool:
    """The admin:* wildcard satisfies any check."""
    return required in granted or WILDCARD in granted


async def resolve_grants(
    tx: IdentityTransaction, user_id: str, now: datetime
) -> EffectiveGrants:
    """
    Union of role permissions over the user's effective assignments.
    Inactive or expired assignments never contribute; neither do deactivated roles.
    """
    roles: dict[str, Role] = {}
    for assignment in await tx.list_assignments(user_id):
        if not assignment.is_effective(now) or assignment.role_id in roles:
            continue
        role = await tx.get_role(assignment.role_id)
        if role is not None and role.is_active:
            roles[role.id] = role
    ordered = tuple(sorted(roles.values(), key=lambda r: r.name))
    permissions: set[Permission] = set()
    for role in ordered:
        permissions |= role.permissions
    return EffectiveGrants(roles=ordered, permissions=frozenset(permissions))


class PermissionResolver:
    """
    Side-effect free. Results are cached per user for the lifetime of this instance;
    the API layer builds one instance per request.
    """

    def __init__(
        self,
        store: IdentityStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._cache: dict[str, EffectiveGrants] = {}

    async def grants(self, user_id: str) -> EffectiveGrants:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        async with self._store.transaction() as tx:
            grants = await resolve_grants(tx, user_id, self._clock())
        self._cache[user_id] = grants
        return grants

    async def effective_permissions(self, user_id: str) -> FrozenSet[Permission]:
        return (await self.grants(user_id)).permissions

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)
