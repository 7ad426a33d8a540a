"""User administration: create, list, detail, update, bulk actions, self-service profile. No FastAPI."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from dashboard_iam.application.identity_store import (
    IdentityStore,
    IdentityTransaction,
    UserQuery,
)
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import (
    DuplicateIdentity,
    Forbidden,
    NotFound,
    SelfActionForbidden,
    Unauthorized,
    ValidationFailed,
)
from dashboard_iam.domain.models.audit import AuditLogEntry, AuditQuery, RequestMeta
from dashboard_iam.domain.models.identity import (
    READER,
    WILDCARD,
    Permission,
    Role,
    RoleAssignment,
    User,
)
from dashboard_iam.domain.models.session import Session
from dashboard_iam.domain.validators.identity_validator import (
    validate_email,
    validate_password,
    validate_username,
)
from dashboard_iam.governance.anomaly_scorer import (
    AnomalyScorer,
    ScoringContext,
    recent_privileged_actions,
)
from dashboard_iam.governance.audit_trail import AuditAction, AuditTrailRecorder, EntityType
from dashboard_iam.governance.change_governance import (
    ensure_not_awaiting_approval,
    ensure_super_admin_quorum,
)
from dashboard_iam.security.access_guard import AccessGuard, Principal
from dashboard_iam.security.passwords import hash_password
from dashboard_iam.security.permissions import resolve_grants

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10
MAX_PAGE_SIZE = 100

BULK_ACTIONS = frozenset({"activate", "suspend", "deactivate"})
USER_STATUSES = frozenset({"active", "inactive", "suspended", "external"})


@dataclass(frozen=True)
class UserSummary:
    user: User
    roles: tuple[Role, ...]

    @property
    def permissions(self) -> list[str]:
        return sorted({p.value for r in self.roles for p in r.permissions})


@dataclass(frozen=True)
class UserPage:
    items: list[UserSummary]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class UserDetail:
    user: User
    roles: tuple[Role, ...]
    recent_activity: list[AuditLogEntry]
    active_sessions: list[Session]


def _ensure_can_grant(principal: Principal, roles: Iterable[Role]) -> None:
    """Only wildcard holders may hand out the wildcard."""
    for role in roles:
        if WILDCARD in role.permissions and not principal.has_direct_permission(WILDCARD):
            raise Forbidden(f"Only SUPER_ADMIN can assign role '{role.name}'")


class UserService:
    def __init__(
        self,
        store: IdentityStore,
        guard: AccessGuard,
        recorder: AuditTrailRecorder,
        scorer: AnomalyScorer,
        super_admin_quorum: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._guard = guard
        self._audit = recorder
        self._scorer = scorer
        self._quorum = super_admin_quorum
        self._clock = clock

    async def create_user(
        self,
        principal: Optional[Principal],
        *,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role_names: Optional[list[str]] = None,
        meta: Optional[RequestMeta] = None,
    ) -> UserSummary:
        """User row and its role assignments commit together or not at all."""
        principal = self._guard.require_permission(principal, Permission.USER_CREATE)
        username = validate_username(username)
        email = validate_email(email)
        validate_password(password)
        password_hash = hash_password(password)

        now = self._clock()
        async with self._store.transaction() as tx:
            await self._ensure_unique(tx, email=email, username=username)
            roles = await self._roles_by_name(tx, role_names or [READER])
            _ensure_can_grant(principal, roles)
            user = User(
                id=new_id(),
                username=username,
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                created_at=now,
                updated_at=now,
            )
            await tx.add_user(user)
            for role in roles:
                await tx.add_assignment(
                    RoleAssignment(
                        id=new_id(),
                        user_id=user.id,
                        role_id=role.id,
                        assigned_by=principal.id,
                        assigned_at=now,
                    )
                )
            risk = self._scorer.score(
                principal.id,
                AuditAction.USER_CREATED,
                ScoringContext(
                    occurred_at=now,
                    proposed_role_ids=frozenset(r.id for r in roles),
                    recent_privileged_actions=await recent_privileged_actions(
                        tx, principal.id, now
                    ),
                ),
            )
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.USER_CREATED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                after={**user.snapshot(), "role_ids": sorted(r.id for r in roles)},
                request_meta=meta,
                risk=risk,
            )
        logger.info("user_created", extra={"user_id": user.id, "roles": [r.name for r in roles]})
        return UserSummary(user=user, roles=tuple(sorted(roles, key=lambda r: r.name)))

    async def list_users(
        self,
        principal: Optional[Principal],
        *,
        search: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> UserPage:
        self._guard.require_permission(principal, Permission.USER_READ)
        if status is not None and status not in USER_STATUSES:
            raise ValidationFailed(f"status must be one of {sorted(USER_STATUSES)}")
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        now = self._clock()
        async with self._store.transaction() as tx:
            users, total = await tx.list_users(
                UserQuery(search=search, status=status), (page - 1) * limit, limit
            )
            items = [
                UserSummary(user=u, roles=(await resolve_grants(tx, u.id, now)).roles)
                for u in users
            ]
        return UserPage(items=items, total=total, page=page, limit=limit)

    async def get_user(self, principal: Optional[Principal], user_id: str) -> UserDetail:
        self._guard.require_permission(principal, Permission.USER_READ)
        now = self._clock()
        async with self._store.transaction() as tx:
            user = await tx.get_user(user_id)
            if user is None:
                raise NotFound(f"User not found: {user_id}")
            grants = await resolve_grants(tx, user.id, now)
            activity, _ = await tx.list_audit(
                AuditQuery(target_user_id=user.id), 0, RECENT_ACTIVITY_LIMIT
            )
            sessions = [s for s in await tx.list_sessions(user.id) if s.is_live(now)]
        return UserDetail(
            user=user, roles=grants.roles, recent_activity=activity, active_sessions=sessions
        )

    async def update_user(
        self,
        principal: Optional[Principal],
        user_id: str,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_suspended: Optional[bool] = None,
        session_timeout_hours: Optional[int] = None,
        meta: Optional[RequestMeta] = None,
    ) -> User:
        """Partial update. Callers cannot deactivate or suspend themselves."""
        principal = self._guard.require_permission(principal, Permission.USER_UPDATE)
        if user_id == principal.id and (is_active is False or is_suspended is True):
            raise SelfActionForbidden("You cannot deactivate or suspend your own account")
        if session_timeout_hours is not None and not 1 <= session_timeout_hours <= 24:
            raise ValidationFailed("session_timeout_hours must be between 1 and 24")

        now = self._clock()
        async with self._store.transaction() as tx:
            user = await tx.get_user(user_id, for_update=True)
            if user is None:
                raise NotFound(f"User not found: {user_id}")
            before = user.snapshot()
            if email is not None and email != user.email:
                email = validate_email(email)
                await self._ensure_unique(tx, email=email)
                user.email = email
            if username is not None and username != user.username:
                username = validate_username(username)
                await self._ensure_unique(tx, username=username)
                user.username = username
            if first_name is not None:
                user.first_name = first_name
            if last_name is not None:
                user.last_name = last_name
            if session_timeout_hours is not None:
                user.session_timeout_hours = session_timeout_hours
            if is_active is True and not user.is_active:
                await ensure_not_awaiting_approval(tx, [user.id])
            if is_active is False or is_suspended is True:
                await ensure_super_admin_quorum(tx, [user.id], now, self._quorum)
            if is_active is not None:
                user.is_active = is_active
            if is_suspended is not None:
                user.is_suspended = is_suspended
            user.updated_at = now
            await tx.save_user(user)
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.USER_UPDATED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                before=before,
                after=user.snapshot(),
                request_meta=meta,
            )
        return user

    async def bulk_action(
        self,
        principal: Optional[Principal],
        user_ids: list[str],
        action: str,
        meta: Optional[RequestMeta] = None,
    ) -> list[User]:
        """All targets change in one transaction, one audit entry each."""
        principal = self._guard.require_permission(principal, Permission.USER_UPDATE)
        if action not in BULK_ACTIONS:
            raise ValidationFailed(f"action must be one of {sorted(BULK_ACTIONS)}")
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            raise ValidationFailed("user_ids must not be empty")
        if principal.id in user_ids:
            raise SelfActionForbidden("Bulk actions cannot include your own account")

        now = self._clock()
        updated: list[User] = []
        async with self._store.transaction() as tx:
            users = []
            for user_id in user_ids:
                user = await tx.get_user(user_id, for_update=True)
                if user is None:
                    raise NotFound(f"User not found: {user_id}")
                users.append(user)
            if action == "activate":
                await ensure_not_awaiting_approval(tx, user_ids)
            else:
                await ensure_super_admin_quorum(tx, user_ids, now, self._quorum)
            risk = self._scorer.score(
                principal.id,
                AuditAction.BULK_PREFIX + action.upper(),
                ScoringContext(
                    occurred_at=now,
                    target_count=len(users),
                    is_bulk=True,
                    recent_privileged_actions=await recent_privileged_actions(
                        tx, principal.id, now
                    ),
                ),
            )
            for user in users:
                before = user.snapshot()
                if action == "activate":
                    user.is_active, user.is_suspended = True, False
                elif action == "suspend":
                    user.is_suspended = True
                else:
                    user.is_active, user.is_suspended = False, True
                user.updated_at = now
                await tx.save_user(user)
                await self._audit.record(
                    tx,
                    actor_id=principal.id,
                    action=AuditAction.BULK_PREFIX + action.upper(),
                    entity_type=EntityType.USER,
                    entity_id=user.id,
                    target_user_id=user.id,
                    before=before,
                    after=user.snapshot(),
                    summary=f"bulk {action} of {len(users)} users",
                    request_meta=meta,
                    risk=risk,
                )
                updated.append(user)
        logger.info("bulk_user_action", extra={"bulk_action": action, "count": len(updated)})
        return updated

    # --- Self-service ---

    async def get_profile(self, principal: Optional[Principal]) -> UserSummary:
        if principal is None:
            raise Unauthorized("Authentication required")
        return UserSummary(user=principal.user, roles=principal.grants.roles)

    async def update_profile(
        self,
        principal: Optional[Principal],
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> User:
        if principal is None:
            raise Unauthorized("Authentication required")
        async with self._store.transaction() as tx:
            user = await tx.get_user(principal.id, for_update=True)
            if user is None:
                raise NotFound(f"User not found: {principal.id}")
            before = user.snapshot()
            if first_name is not None:
                user.first_name = first_name
            if last_name is not None:
                user.last_name = last_name
            user.updated_at = self._clock()
            await tx.save_user(user)
            await self._audit.record(
                tx,
                actor_id=principal.id,
                action=AuditAction.USER_PROFILE_UPDATED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                before=before,
                after=user.snapshot(),
                request_meta=meta,
            )
        return user

    # --- helpers ---

    @staticmethod
    async def _ensure_unique(
        tx: IdentityTransaction,
        *,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        if email is not None and await tx.find_user_by_email(email) is not None:
            raise DuplicateIdentity("Email already registered", {"field": "email"})
        if username is not None and await tx.find_user_by_username(username) is not None:
            raise DuplicateIdentity("Username already taken", {"field": "username"})

    @staticmethod
    async def _roles_by_name(tx: IdentityTransaction, names: list[str]) -> list[Role]:
        roles: list[Role] = []
        unknown: list[str] = []
        for name in dict.fromkeys(names):
            role = await tx.get_role_by_name(name)
            if role is None or not role.is_active:
                unknown.append(name)
            else:
                roles.append(role)
        if unknown:
            raise ValidationFailed(
                "Unknown or inactive role(s)",
                issues=[f"role '{n}' does not exist or is inactive" for n in unknown],
            )
        return roles
