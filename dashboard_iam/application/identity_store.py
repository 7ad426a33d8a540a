"""Identity store protocol. Application and governance layers depend on this; infrastructure implements it.

Every read and write goes through a transaction. A transaction either commits all of its
writes or none of them, and concurrent readers never observe an intermediate state.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Iterable, Optional, Protocol

from dashboard_iam.domain.models.audit import AuditLogEntry, AuditQuery
from dashboard_iam.domain.models.governance import (
    ChangeRequest,
    PendingApproval,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import Role, RoleAssignment, User
from dashboard_iam.domain.models.session import Session


@dataclass(frozen=True)
class UserQuery:
    """List filter. status is one of active/inactive/suspended/external."""

    search: Optional[str] = None
    status: Optional[str] = None


class IdentityTransaction(Protocol):
    """Unit of work over users, roles, assignments, governance records, sessions, audit."""

    # --- Users ---
    async def get_user(self, user_id: str, *, for_update: bool = False) -> Optional[User]: ...
    async def find_user_by_email(self, email: str) -> Optional[User]: ...
    async def find_user_by_username(self, username: str) -> Optional[User]: ...
    async def list_users(
        self, query: UserQuery, offset: int, limit: int
    ) -> tuple[list[User], int]: ...
    async def add_user(self, user: User) -> None: ...
    async def save_user(self, user: User) -> None: ...
    async def purge_user(self, user_id: str) -> None: ...

    # --- Roles ---
    async def get_role(self, role_id: str) -> Optional[Role]: ...
    async def get_role_by_name(self, name: str) -> Optional[Role]: ...
    async def list_roles(self, *, active_only: bool = True) -> list[Role]: ...
    async def add_role(self, role: Role) -> None: ...
    async def save_role(self, role: Role) -> None: ...

    # --- Role assignments ---
    async def list_assignments(self, user_id: str) -> list[RoleAssignment]: ...
    async def list_assignments_for_role(self, role_id: str) -> list[RoleAssignment]: ...
    async def add_assignment(self, assignment: RoleAssignment) -> None: ...
    async def deactivate_assignments(self, user_id: str) -> list[RoleAssignment]: ...

    # --- Change requests ---
    async def add_change_request(self, request: ChangeRequest) -> None: ...
    async def get_change_request(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[ChangeRequest]: ...
    async def save_change_request(self, request: ChangeRequest) -> None: ...
    async def list_change_requests(
        self, status: Optional[RequestStatus]
    ) -> list[ChangeRequest]: ...

    # --- Pending approvals (JIT) ---
    async def add_pending_approval(self, approval: PendingApproval) -> None: ...
    async def get_pending_approval(
        self, approval_id: str, *, for_update: bool = False
    ) -> Optional[PendingApproval]: ...
    async def save_pending_approval(self, approval: PendingApproval) -> None: ...
    async def list_pending_approvals(
        self, status: Optional[RequestStatus]
    ) -> list[PendingApproval]: ...

    # --- Sessions ---
    async def add_session(self, session: Session) -> None: ...
    async def get_session(self, session_id: str) -> Optional[Session]: ...
    async def save_session(self, session: Session) -> None: ...
    async def list_sessions(self, user_id: str) -> list[Session]: ...

    # --- Audit (append-only) ---
    async def append_audit(self, entry: AuditLogEntry) -> None: ...
    async def list_audit(
        self, query: AuditQuery, offset: int, limit: int
    ) -> tuple[list[AuditLogEntry], int]: ...
    async def count_audit(
        self, actor_id: str, since: datetime, actions: Optional[Iterable[str]] = None
    ) -> int: ...


class IdentityStore(Protocol):
    """Shared mutable resource. Transactions are atomic."""

    def transaction(self) -> AsyncContextManager[IdentityTransaction]: ...
