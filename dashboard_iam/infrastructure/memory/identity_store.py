"""In-memory identity store. For tests or single-node deployments.

Transactions are serialized by one asyncio lock and work on a private copy of the state
that replaces the committed state only when the block exits cleanly.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

from dashboard_iam.application.identity_store import UserQuery
from dashboard_iam.domain.models.audit import AuditLogEntry, AuditQuery
from dashboard_iam.domain.models.governance import (
    ChangeRequest,
    PendingApproval,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import Role, RoleAssignment, User
from dashboard_iam.domain.models.session import Session


@dataclass
class _State:
    users: dict[str, User] = field(default_factory=dict)
    roles: dict[str, Role] = field(default_factory=dict)
    assignments: dict[str, RoleAssignment] = field(default_factory=dict)
    change_requests: dict[str, ChangeRequest] = field(default_factory=dict)
    pending_approvals: dict[str, PendingApproval] = field(default_factory=dict)
    sessions: dict[str, Session] = field(default_factory=dict)
    audit: list[AuditLogEntry] = field(default_factory=list)

    def working_copy(self) -> "_State":
        """Deep copy of the mutable maps; audit entries are frozen and append-only, so shared."""
        return _State(
            users=copy.deepcopy(self.users),
            roles=copy.deepcopy(self.roles),
            assignments=copy.deepcopy(self.assignments),
            change_requests=copy.deepcopy(self.change_requests),
            pending_approvals=copy.deepcopy(self.pending_approvals),
            sessions=copy.deepcopy(self.sessions),
            audit=list(self.audit),
        )


def _matches_status(user: User, status: Optional[str]) -> bool:
    if not status:
        return True
    if status == "active":
        return user.is_active
    if status == "inactive":
        return not user.is_active
    if status == "suspended":
        return user.is_suspended
    if status == "external":
        return user.is_external
    return True


def _matches_search(user: User, search: Optional[str]) -> bool:
    if not search:
        return True
    needle = search.lower()
    fields = (user.username, user.email, user.first_name or "", user.last_name or "")
    return any(needle in f.lower() for f in fields)


def _matches_audit(entry: AuditLogEntry, query: AuditQuery) -> bool:
    if query.actor_id and entry.actor_id != query.actor_id:
        return False
    if query.target_user_id and entry.target_user_id != query.target_user_id:
        return False
    if query.action and entry.action != query.action:
        return False
    if query.entity_type and entry.entity_type != query.entity_type:
        return False
    if query.since and entry.timestamp < query.since:
        return False
    if query.until and entry.timestamp > query.until:
        return False
    if query.anomalous_only and not entry.is_anomalous:
        return False
    return True


class InMemoryTransaction:
    """Implements IdentityTransaction over a working copy. Reads return copies."""

    def __init__(self, state: _State) -> None:
        self._s = state

    # --- Users ---

    async def get_user(self, user_id: str, *, for_update: bool = False) -> Optional[User]:
        return copy.deepcopy(self._s.users.get(user_id))

    async def find_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        for user in self._s.users.values():
            if user.email.lower() == email:
                return copy.deepcopy(user)
        return None

    async def find_user_by_username(self, username: str) -> Optional[User]:
        for user in self._s.users.values():
            if user.username == username:
                return copy.deepcopy(user)
        return None

    async def list_users(
        self, query: UserQuery, offset: int, limit: int
    ) -> tuple[list[User], int]:
        matched = [
            u
            for u in self._s.users.values()
            if _matches_status(u, query.status) and _matches_search(u, query.search)
        ]
        matched.sort(
            key=lambda u: (u.created_at.timestamp() if u.created_at else 0.0, u.id), reverse=True
        )
        return copy.deepcopy(matched[offset : offset + limit]), len(matched)

    async def add_user(self, user: User) -> None:
        self._s.users[user.id] = copy.deepcopy(user)

    async def save_user(self, user: User) -> None:
        self._s.users[user.id] = copy.deepcopy(user)

    async def purge_user(self, user_id: str) -> None:
        self._s.users.pop(user_id, None)
        self._s.assignments = {
            k: a for k, a in self._s.assignments.items() if a.user_id != user_id
        }
        self._s.sessions = {
            k: s for k, s in self._s.sessions.items() if s.user_id != user_id
        }
        self._s.pending_approvals = {
            k: p for k, p in self._s.pending_approvals.items() if p.user_id != user_id
        }

    # --- Roles ---

    async def get_role(self, role_id: str) -> Optional[Role]:
        return copy.deepcopy(self._s.roles.get(role_id))

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        for role in self._s.roles.values():
            if role.name == name:
                return copy.deepcopy(role)
        return None

    async def list_roles(self, *, active_only: bool = True) -> list[Role]:
        roles = [r for r in self._s.roles.values() if r.is_active or not active_only]
        return copy.deepcopy(sorted(roles, key=lambda r: r.name))

    async def add_role(self, role: Role) -> None:
        self._s.roles[role.id] = copy.deepcopy(role)

    async def save_role(self, role: Role) -> None:
        self._s.roles[role.id] = copy.deepcopy(role)

    # --- Role assignments ---

    async def list_assignments(self, user_id: str) -> list[RoleAssignment]:
        return copy.deepcopy(
            [a for a in self._s.assignments.values() if a.user_id == user_id]
        )

    async def list_assignments_for_role(self, role_id: str) -> list[RoleAssignment]:
        return copy.deepcopy(
            [a for a in self._s.assignments.values() if a.role_id == role_id]
        )

    async def add_assignment(self, assignment: RoleAssignment) -> None:
        self._s.assignments[assignment.id] = copy.deepcopy(assignment)

    async def deactivate_assignments(self, user_id: str) -> list[RoleAssignment]:
        changed = []
        for assignment in self._s.assignments.values():
            if assignment.user_id == user_id and assignment.is_active:
                assignment.is_active = False
                changed.append(copy.deepcopy(assignment))
        return changed

    # --- Change requests ---

    async def add_change_request(self, request: ChangeRequest) -> None:
        self._s.change_requests[request.id] = copy.deepcopy(request)

    async def get_change_request(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[ChangeRequest]:
        return copy.deepcopy(self._s.change_requests.get(request_id))

    async def save_change_request(self, request: ChangeRequest) -> None:
        self._s.change_requests[request.id] = copy.deepcopy(request)

    async def list_change_requests(
        self, status: Optional[RequestStatus]
    ) -> list[ChangeRequest]:
        found = [
            r
            for r in self._s.change_requests.values()
            if status is None or r.status == status
        ]
        return copy.deepcopy(sorted(found, key=lambda r: r.created_at, reverse=True))

    # --- Pending approvals ---

    async def add_pending_approval(self, approval: PendingApproval) -> None:
        self._s.pending_approvals[approval.id] = copy.deepcopy(approval)

    async def get_pending_approval(
        self, approval_id: str, *, for_update: bool = False
    ) -> Optional[PendingApproval]:
        return copy.deepcopy(self._s.pending_approvals.get(approval_id))

    async def save_pending_approval(self, approval: PendingApproval) -> None:
        self._s.pending_approvals[approval.id] = copy.deepcopy(approval)

    async def list_pending_approvals(
        self, status: Optional[RequestStatus]
    ) -> list[PendingApproval]:
        found = [
            p
            for p in self._s.pending_approvals.values()
            if status is None or p.status == status
        ]
        return copy.deepcopy(sorted(found, key=lambda p: p.created_at, reverse=True))

    # --- Sessions ---

    async def add_session(self, session: Session) -> None:
        self._s.sessions[session.id] = copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        return copy.deepcopy(self._s.sessions.get(session_id))

    async def save_session(self, session: Session) -> None:
        self._s.sessions[session.id] = copy.deepcopy(session)

    async def list_sessions(self, user_id: str) -> list[Session]:
        found = [s for s in self._s.sessions.values() if s.user_id == user_id]
        return copy.deepcopy(
            sorted(found, key=lambda s: s.last_activity_at, reverse=True)
        )

    # --- Audit ---

    async def append_audit(self, entry: AuditLogEntry) -> None:
        self._s.audit.append(entry)

    async def list_audit(
        self, query: AuditQuery, offset: int, limit: int
    ) -> tuple[list[AuditLogEntry], int]:
        matched = [e for e in self._s.audit if _matches_audit(e, query)]
        if query.order_by_risk:
            matched.sort(key=lambda e: (e.risk_score, e.timestamp), reverse=True)
        else:
            matched.sort(key=lambda e: e.timestamp, reverse=True)
        return copy.deepcopy(matched[offset : offset + limit]), len(matched)

    async def count_audit(
        self, actor_id: str, since: datetime, actions: Optional[Iterable[str]] = None
    ) -> int:
        allowed = frozenset(actions) if actions is not None else None
        return sum(
            1
            for e in self._s.audit
            if e.actor_id == actor_id
            and e.timestamp >= since
            and (allowed is None or e.action in allowed)
        )


class InMemoryIdentityStore:
    """Implements IdentityStore. All-or-nothing commit per transaction block."""

    def __init__(self) -> None:
        self._state = _State()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            working = self._state.working_copy()
            yield InMemoryTransaction(working)
            # Only reached when the block raised nothing.
            self._state = working
