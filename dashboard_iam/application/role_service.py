"""Role administration and idempotent startup seeding. No FastAPI."""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from dashboard_iam.application.identity_store import IdentityStore
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import DuplicateIdentity, Forbidden, NotFound, ValidationFailed
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.identity import (
    EXTERNAL_USER,
    READER,
    SUPER_ADMIN,
    USER_ADMIN,
    WILDCARD,
    Permission,
    Role,
    parse_permissions,
)
from dashboard_iam.governance.audit_trail import AuditAction, AuditTrailRecorder, EntityType
from dashboard_iam.governance.change_governance import SYSTEM_ACTOR_ID
from dashboard_iam.security.access_guard import AccessGuard, Principal

logger = logging.getLogger(__name__)

SEED_ROLES: dict[str, tuple[str, frozenset[Permission]]] = {
    SUPER_ADMIN: (
        "Full system access",
        frozenset({Permission.ADMIN_ALL, Permission.USER_ROLES_UPDATE}),
    ),
    USER_ADMIN: (
        "User management; role changes go through approval",
        frozenset(
            {
                Permission.USER_CREATE,
                Permission.USER_READ,
                Permission.USER_UPDATE,
                Permission.ROLE_READ,
                Permission.USER_ROLES_REQUEST,
                Permission.DASHBOARD_READ,
            }
        ),
    ),
    READER: (
        "Read-only access to dashboards and reports",
        frozenset(
            {
                Permission.DASHBOARD_READ,
                Permission.REPORTS_READ,
                Permission.PRODUCTS_READ,
                Permission.CUSTOMERS_READ,
            }
        ),
    ),
    EXTERNAL_USER: (
        "Limited access for externally authenticated users",
        frozenset({Permission.DASHBOARD_READ, Permission.PROFILE_UPDATE}),
    ),
}


async def seed_roles(
    store: IdentityStore,
    recorder: Optional[AuditTrailRecorder] = None,
    clock: Callable[[], datetime] = utc_now,
) -> list[str]:
    """Insert any missing built-in role. Existing roles are left untouched."""
    recorder = recorder or AuditTrailRecorder(clock=clock)
    created: list[str] = []
    async with store.transaction() as tx:
        for name, (description, permissions) in SEED_ROLES.items():
            if await tx.get_role_by_name(name) is not None:
                continue
            role = Role(
                id=new_id(),
                name=name,
                description=description,
                permissions=permissions,
                created_at=clock(),
            )
            await tx.add_role(role)
            await recorder.record(
                tx,
                actor_id=SYSTEM_ACTOR_ID,
                action=AuditAction.ROLE_CREATED,
                entity_type=EntityType.ROLE,
                entity_id=role.id,
                after=role.snapshot(),
                summary="seeded at startup",
            )
            created.append(name)
    if created:
        logger.info("roles_seeded", extra={"roles": created})
    return created


class RoleService:
    def __init__(
        self,
        store: IdentityStore,
        guard: AccessGuard,
        recorder: AuditTrailRecorder,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._guard = guard
        self._audit = recorder
        self._clock = clock

    async def list_roles(
        self, principal: Optional[Principal], include_inactive: bool = False
    ) -> list[Role]:
        self._guard.require_permission(principal, Permission.ROLE_READ)
        async with self._store.transaction() as tx:
            roles = await tx.list_roles(active_only=not include_inactive)
        return sorted(roles, key=lambda r: r.name)

    async def create_role(
        self,
        principal: Optional[Principal],
        *,
        name: str,
        permissions: Iterable[str],
        description: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Role:
        principal = self._guard.require_permission(principal, Permission.ROLE_CREATE)
        name = (name or "").strip().upper()
        if not name:
            raise ValidationFailed("Role name is required")
        parsed = parse_permissions(permissions)
        self._ensure_can_grant(principal, parsed)
        async with self._store.transaction() as tx:
            if await tx.get_role_by_name(name) is not None:
                raise DuplicateIdentity(f"Role already exists: {name}", {"field": "name"})
            role = Role(
                id=new_id(),
                name=name,
                description=description,
                permissions=parsed,
                created_at=self._clock(),
            )
            await tx.add_role(role)
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.ROLE_CREATED,
                entity_type=EntityType.ROLE,
                entity_id=role.id,
                after=role.snapshot(),
                request_meta=meta,
            )
        return role

    async def update_role(
        self,
        principal: Optional[Principal],
        role_id: str,
        *,
        description: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        is_active: Optional[bool] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Role:
        principal = self._guard.require_permission(principal, Permission.ROLE_UPDATE)
        parsed = parse_permissions(permissions) if permissions is not None else None
        if parsed is not None:
            self._ensure_can_grant(principal, parsed)
        async with self._store.transaction() as tx:
            role = await tx.get_role(role_id)
            if role is None:
                raise NotFound(f"Role not found: {role_id}")
            if role.name == SUPER_ADMIN and (
                is_active is False or (parsed is not None and WILDCARD not in parsed)
            ):
                raise ValidationFailed("SUPER_ADMIN must stay active and keep admin:*")
            before = role.snapshot()
            if description is not None:
                role.description = description
            if parsed is not None:
                role.permissions = parsed
            if is_active is not None:
                role.is_active = is_active
            await tx.save_role(role)
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.ROLE_UPDATED,
                entity_type=EntityType.ROLE,
                entity_id=role.id,
                before=before,
                after=role.snapshot(),
                request_meta=meta,
            )
        return role

    @staticmethod
    def _ensure_can_grant(principal: Principal, permissions: frozenset[Permission]) -> None:
        if WILDCARD in permissions and not principal.has_direct_permission(WILDCARD):
            raise Forbidden("Only SUPER_ADMIN can grant admin:*")
