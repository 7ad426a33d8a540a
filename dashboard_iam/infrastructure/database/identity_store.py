"""DB-backed identity store. SQLAlchemy AsyncSession, one database transaction per unit of work."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dashboard_iam.application.identity_store import UserQuery
from dashboard_iam.domain.exceptions import StoreError
from dashboard_iam.domain.models.audit import AuditLogEntry, AuditQuery, RequestMeta
from dashboard_iam.domain.models.governance import (
    ChangeRequest,
    ChangeType,
    PendingApproval,
    RequestStatus,
)
from dashboard_iam.domain.models.identity import (
    Role,
    RoleAssignment,
    User,
    parse_permissions,
)
from dashboard_iam.domain.models.session import Session
from dashboard_iam.infrastructure.database.models import (
    AuditLogRow,
    ChangeRequestRow,
    PendingApprovalRow,
    RoleAssignmentRow,
    RoleRow,
    SessionRow,
    UserRow,
)

logger = logging.getLogger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _apply(row: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# ---------------------------------------------------------------------------
# Row <-> domain mapping
# ---------------------------------------------------------------------------

def _user_values(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "password_hash": user.password_hash,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_active": user.is_active,
        "is_suspended": user.is_suspended,
        "is_external": user.is_external,
        "external_provider": user.external_provider,
        "failed_attempts": user.failed_attempts,
        "locked_until": user.locked_until,
        "last_login_at": user.last_login_at,
        "session_timeout_hours": user.session_timeout_hours,
        "created_at": user.created_at,
    }


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=row.is_active,
        is_suspended=row.is_suspended,
        is_external=row.is_external,
        external_provider=row.external_provider,
        failed_attempts=row.failed_attempts or 0,
        locked_until=_utc(row.locked_until),
        last_login_at=_utc(row.last_login_at),
        session_timeout_hours=row.session_timeout_hours,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _role_values(role: Role) -> dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "permissions": sorted(p.value for p in role.permissions),
        "is_active": role.is_active,
        "created_at": role.created_at,
    }


def _to_role(row: RoleRow) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        permissions=parse_permissions(row.permissions or []),
        is_active=row.is_active,
        created_at=_utc(row.created_at),
    )


def _to_assignment(row: RoleAssignmentRow) -> RoleAssignment:
    return RoleAssignment(
        id=row.id,
        user_id=row.user_id,
        role_id=row.role_id,
        assigned_by=row.assigned_by,
        assigned_at=_utc(row.assigned_at),
        expires_at=_utc(row.expires_at),
        is_active=row.is_active,
    )


def _change_request_values(request: ChangeRequest) -> dict[str, Any]:
    return {
        "id": request.id,
        "requester_id": request.requester_id,
        "target_user_id": request.target_user_id,
        "change_type": request.change_type.value,
        "proposed_changes": request.proposed_changes,
        "current_values": request.current_values,
        "justification": request.justification,
        "status": request.status.value,
        "emergency": request.emergency,
        "risk_score": request.risk_score,
        "is_anomalous": request.is_anomalous,
        "created_at": request.created_at,
        "expires_at": request.expires_at,
        "decided_by": request.decided_by,
        "decided_at": request.decided_at,
        "decision_reason": request.decision_reason,
    }


def _to_change_request(row: ChangeRequestRow) -> ChangeRequest:
    return ChangeRequest(
        id=row.id,
        requester_id=row.requester_id,
        target_user_id=row.target_user_id,
        change_type=ChangeType(row.change_type),
        proposed_changes=row.proposed_changes,
        current_values=row.current_values or {},
        justification=row.justification,
        status=RequestStatus(row.status),
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        emergency=row.emergency,
        risk_score=row.risk_score,
        is_anomalous=row.is_anomalous,
        decided_by=row.decided_by,
        decided_at=_utc(row.decided_at),
        decision_reason=row.decision_reason,
    )


def _pending_values(approval: PendingApproval) -> dict[str, Any]:
    return {
        "id": approval.id,
        "user_id": approval.user_id,
        "provider": approval.provider,
        "email": approval.email,
        "raw_claims": approval.raw_claims,
        "proposed_role_ids": list(approval.proposed_role_ids),
        "status": approval.status.value,
        "created_at": approval.created_at,
        "expires_at": approval.expires_at,
        "decided_by": approval.decided_by,
        "decided_at": approval.decided_at,
        "decision_reason": approval.decision_reason,
    }


def _to_pending(row: PendingApprovalRow) -> PendingApproval:
    return PendingApproval(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        email=row.email,
        raw_claims=row.raw_claims,
        proposed_role_ids=list(row.proposed_role_ids),
        status=RequestStatus(row.status),
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        decided_by=row.decided_by,
        decided_at=_utc(row.decided_at),
        decision_reason=row.decision_reason,
    )


def _session_values(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "user_id": session.user_id,
        "ip_address": session.ip_address,
        "user_agent": session.user_agent,
        "is_active": session.is_active,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "last_activity_at": session.last_activity_at,
        "ended_at": session.ended_at,
    }


def _to_session(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        last_activity_at=_utc(row.last_activity_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_active=row.is_active,
        ended_at=_utc(row.ended_at),
    )


def _to_audit(row: AuditLogRow) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        actor_id=row.actor_id,
        target_user_id=row.target_user_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        before=row.before_values,
        after=row.after_values,
        summary=row.change_summary,
        request_meta=RequestMeta(
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            session_id=row.session_id,
        ),
        risk_score=row.risk_score,
        is_anomalous=row.is_anomalous,
        timestamp=_utc(row.timestamp),
    )


class SqlTransaction:
    """Implements IdentityTransaction on one AsyncSession inside session.begin()."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _one(self, stmt) -> Any:
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _all(self, stmt) -> list[Any]:
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _upsert(self, model: type, values: dict[str, Any]) -> None:
        row = await self._session.get(model, values["id"])
        if row is None:
            self._session.add(model(**values))
        else:
            _apply(row, values)
        await self._session.flush()

    # --- Users ---

    async def get_user(self, user_id: str, *, for_update: bool = False) -> Optional[User]:
        stmt = select(UserRow).where(UserRow.id == user_id)
        if for_update:
            # Serializes concurrent governance writes against the same target.
            stmt = stmt.with_for_update()
        row = await self._one(stmt)
        return _to_user(row) if row else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        row = await self._one(
            select(UserRow).where(func.lower(UserRow.email) == email.lower())
        )
        return _to_user(row) if row else None

    async def find_user_by_username(self, username: str) -> Optional[User]:
        row = await self._one(select(UserRow).where(UserRow.username == username))
        return _to_user(row) if row else None

    async def list_users(
        self, query: UserQuery, offset: int, limit: int
    ) -> tuple[list[User], int]:
        conditions = []
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(
                or_(
                    UserRow.username.ilike(pattern),
                    UserRow.email.ilike(pattern),
                    UserRow.first_name.ilike(pattern),
                    UserRow.last_name.ilike(pattern),
                )
            )
        if query.status == "active":
            conditions.append(UserRow.is_active == True)  # noqa: E712
        elif query.status == "inactive":
            conditions.append(UserRow.is_active == False)  # noqa: E712
        elif query.status == "suspended":
            conditions.append(UserRow.is_suspended == True)  # noqa: E712
        elif query.status == "external":
            conditions.append(UserRow.is_external == True)  # noqa: E712

        stmt = (
            select(UserRow)
            .where(*conditions)
            .order_by(UserRow.created_at.desc(), UserRow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = await self._all(stmt)
        total = await self._session.scalar(
            select(func.count()).select_from(UserRow).where(*conditions)
        )
        return [_to_user(r) for r in rows], int(total or 0)

    async def add_user(self, user: User) -> None:
        values = _user_values(user)
        if values["created_at"] is None:
            values.pop("created_at")
        self._session.add(UserRow(**values))
        await self._session.flush()

    async def save_user(self, user: User) -> None:
        values = _user_values(user)
        values.pop("created_at")
        await self._upsert(UserRow, values)

    async def purge_user(self, user_id: str) -> None:
        await self._session.execute(
            delete(RoleAssignmentRow).where(RoleAssignmentRow.user_id == user_id)
        )
        await self._session.execute(delete(SessionRow).where(SessionRow.user_id == user_id))
        await self._session.execute(
            delete(PendingApprovalRow).where(PendingApprovalRow.user_id == user_id)
        )
        await self._session.execute(delete(UserRow).where(UserRow.id == user_id))

    # --- Roles ---

    async def get_role(self, role_id: str) -> Optional[Role]:
        row = await self._session.get(RoleRow, role_id)
        return _to_role(row) if row else None

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        row = await self._one(select(RoleRow).where(RoleRow.name == name))
        return _to_role(row) if row else None

    async def list_roles(self, *, active_only: bool = True) -> list[Role]:
        stmt = select(RoleRow).order_by(RoleRow.name)
        if active_only:
            stmt = stmt.where(RoleRow.is_active == True)  # noqa: E712
        return [_to_role(r) for r in await self._all(stmt)]

    async def add_role(self, role: Role) -> None:
        values = _role_values(role)
        if values["created_at"] is None:
            values.pop("created_at")
        self._session.add(RoleRow(**values))
        await self._session.flush()

    async def save_role(self, role: Role) -> None:
        values = _role_values(role)
        values.pop("created_at")
        await self._upsert(RoleRow, values)

    # --- Role assignments ---

    async def list_assignments(self, user_id: str) -> list[RoleAssignment]:
        rows = await self._all(
            select(RoleAssignmentRow)
            .where(RoleAssignmentRow.user_id == user_id)
            .order_by(RoleAssignmentRow.assigned_at)
        )
        return [_to_assignment(r) for r in rows]

    async def list_assignments_for_role(self, role_id: str) -> list[RoleAssignment]:
        rows = await self._all(
            select(RoleAssignmentRow).where(RoleAssignmentRow.role_id == role_id)
        )
        return [_to_assignment(r) for r in rows]

    async def add_assignment(self, assignment: RoleAssignment) -> None:
        self._session.add(
            RoleAssignmentRow(
                id=assignment.id,
                user_id=assignment.user_id,
                role_id=assignment.role_id,
                assigned_by=assignment.assigned_by,
                assigned_at=assignment.assigned_at,
                expires_at=assignment.expires_at,
                is_active=assignment.is_active,
            )
        )
        await self._session.flush()

    async def deactivate_assignments(self, user_id: str) -> list[RoleAssignment]:
        rows = await self._all(
            select(RoleAssignmentRow).where(
                RoleAssignmentRow.user_id == user_id,
                RoleAssignmentRow.is_active == True,  # noqa: E712
            )
        )
        for row in rows:
            row.is_active = False
        await self._session.flush()
        return [_to_assignment(r) for r in rows]

    # --- Change requests ---

    async def add_change_request(self, request: ChangeRequest) -> None:
        self._session.add(ChangeRequestRow(**_change_request_values(request)))
        await self._session.flush()

    async def get_change_request(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[ChangeRequest]:
        stmt = select(ChangeRequestRow).where(ChangeRequestRow.id == request_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = await self._one(stmt)
        return _to_change_request(row) if row else None

    async def save_change_request(self, request: ChangeRequest) -> None:
        await self._upsert(ChangeRequestRow, _change_request_values(request))

    async def list_change_requests(
        self, status: Optional[RequestStatus]
    ) -> list[ChangeRequest]:
        stmt = select(ChangeRequestRow).order_by(ChangeRequestRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(ChangeRequestRow.status == status.value)
        return [_to_change_request(r) for r in await self._all(stmt)]

    # --- Pending approvals ---

    async def add_pending_approval(self, approval: PendingApproval) -> None:
        self._session.add(PendingApprovalRow(**_pending_values(approval)))
        await self._session.flush()

    async def get_pending_approval(
        self, approval_id: str, *, for_update: bool = False
    ) -> Optional[PendingApproval]:
        stmt = select(PendingApprovalRow).where(PendingApprovalRow.id == approval_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = await self._one(stmt)
        return _to_pending(row) if row else None

    async def save_pending_approval(self, approval: PendingApproval) -> None:
        await self._upsert(PendingApprovalRow, _pending_values(approval))

    async def list_pending_approvals(
        self, status: Optional[RequestStatus]
    ) -> list[PendingApproval]:
        stmt = select(PendingApprovalRow).order_by(PendingApprovalRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(PendingApprovalRow.status == status.value)
        return [_to_pending(r) for r in await self._all(stmt)]

    # --- Sessions ---

    async def add_session(self, session: Session) -> None:
        self._session.add(SessionRow(**_session_values(session)))
        await self._session.flush()

    async def get_session(self, session_id: str) -> Optional[Session]:
        row = await self._session.get(SessionRow, session_id)
        return _to_session(row) if row else None

    async def save_session(self, session: Session) -> None:
        await self._upsert(SessionRow, _session_values(session))

    async def list_sessions(self, user_id: str) -> list[Session]:
        rows = await self._all(
            select(SessionRow)
            .where(SessionRow.user_id == user_id)
            .order_by(SessionRow.last_activity_at.desc())
        )
        return [_to_session(r) for r in rows]

    # --- Audit ---

    async def append_audit(self, entry: AuditLogEntry) -> None:
        self._session.add(
            AuditLogRow(
                id=entry.id,
                actor_id=entry.actor_id,
                target_user_id=entry.target_user_id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                before_values=entry.before,
                after_values=entry.after,
                change_summary=entry.summary,
                ip_address=entry.request_meta.ip_address,
                user_agent=entry.request_meta.user_agent,
                session_id=entry.request_meta.session_id,
                risk_score=entry.risk_score,
                is_anomalous=entry.is_anomalous,
                timestamp=entry.timestamp,
            )
        )
        await self._session.flush()

    async def list_audit(
        self, query: AuditQuery, offset: int, limit: int
    ) -> tuple[list[AuditLogEntry], int]:
        conditions = []
        if query.actor_id:
            conditions.append(AuditLogRow.actor_id == query.actor_id)
        if query.target_user_id:
            conditions.append(AuditLogRow.target_user_id == query.target_user_id)
        if query.action:
            conditions.append(AuditLogRow.action == query.action)
        if query.entity_type:
            conditions.append(AuditLogRow.entity_type == query.entity_type)
        if query.since:
            conditions.append(AuditLogRow.timestamp >= query.since)
        if query.until:
            conditions.append(AuditLogRow.timestamp <= query.until)
        if query.anomalous_only:
            conditions.append(AuditLogRow.is_anomalous == True)  # noqa: E712

        order = (
            (AuditLogRow.risk_score.desc(), AuditLogRow.timestamp.desc())
            if query.order_by_risk
            else (AuditLogRow.timestamp.desc(),)
        )
        rows = await self._all(
            select(AuditLogRow).where(*conditions).order_by(*order).offset(offset).limit(limit)
        )
        total = await self._session.scalar(
            select(func.count()).select_from(AuditLogRow).where(*conditions)
        )
        return [_to_audit(r) for r in rows], int(total or 0)

    async def count_audit(
        self, actor_id: str, since: datetime, actions: Optional[Iterable[str]] = None
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(AuditLogRow)
            .where(AuditLogRow.actor_id == actor_id, AuditLogRow.timestamp >= since)
        )
        if actions is not None:
            stmt = stmt.where(AuditLogRow.action.in_(list(actions)))
        total = await self._session.scalar(stmt)
        return int(total or 0)


class SqlIdentityStore:
    """Implements IdentityStore. Commit on clean exit, rollback on any exception."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlTransaction]:
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    yield SqlTransaction(session)
        except SQLAlchemyError as e:
            logger.error("store_transaction_failed", extra={"error": str(e)}, exc_info=True)
            raise StoreError("Identity store transaction failed") from e
