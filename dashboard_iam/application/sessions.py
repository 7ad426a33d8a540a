"""Session registry: open on login, list live sessions, revoke, end on logout. No FastAPI."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from dashboard_iam.application.identity_store import IdentityStore, IdentityTransaction
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import NotFound, SelfActionForbidden, Unauthorized
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.identity import Permission, User
from dashboard_iam.domain.models.session import Session
from dashboard_iam.governance.audit_trail import AuditAction, AuditTrailRecorder, EntityType
from dashboard_iam.security.access_guard import AccessGuard, Principal

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Sessions expire lazily: anything past its deadline reads as absent whether or not
    it was ever swept.
    """

    def __init__(
        self,
        store: IdentityStore,
        guard: AccessGuard,
        recorder: AuditTrailRecorder,
        default_ttl_hours: int = 8,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._guard = guard
        self._audit = recorder
        self._default_ttl = default_ttl_hours
        self._clock = clock

    async def open_session(
        self,
        tx: IdentityTransaction,
        user: User,
        meta: Optional[RequestMeta] = None,
    ) -> Session:
        """Runs inside the login transaction; the caller records the audit entry."""
        now = self._clock()
        ttl_hours = user.session_timeout_hours or self._default_ttl
        meta = meta or RequestMeta()
        session = Session(
            id=new_id(),
            user_id=user.id,
            created_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
            last_activity_at=now,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        await tx.add_session(session)
        return session

    async def get_live_session(
        self, tx: IdentityTransaction, session_id: str
    ) -> Optional[Session]:
        session = await tx.get_session(session_id)
        if session is None or not session.is_live(self._clock()):
            return None
        return session

    async def touch(self, tx: IdentityTransaction, session: Session) -> None:
        """Activity bookkeeping only; not an audited mutation."""
        session.last_activity_at = self._clock()
        await tx.save_session(session)

    async def list_active_sessions(
        self, principal: Optional[Principal], user_id: str
    ) -> list[Session]:
        if principal is None or principal.id != user_id:
            self._guard.require_permission(principal, Permission.USER_READ)
        now = self._clock()
        async with self._store.transaction() as tx:
            if await tx.get_user(user_id) is None:
                raise NotFound(f"User not found: {user_id}")
            sessions = await tx.list_sessions(user_id)
        return [s for s in sessions if s.is_live(now)]

    async def revoke_session(
        self,
        principal: Optional[Principal],
        session_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> Session:
        principal = self._guard.require_permission(principal, Permission.USER_UPDATE)
        if session_id == principal.session_id:
            raise SelfActionForbidden("Use logout to end your current session")
        async with self._store.transaction() as tx:
            session = await self.get_live_session(tx, session_id)
            if session is None:
                raise NotFound(f"Active session not found: {session_id}")
            await self._end(tx, session, principal.id, AuditAction.SESSION_REVOKED, meta)
        logger.info("session_revoked", extra={"session_id": session_id, "user_id": session.user_id})
        return session

    async def end_session(
        self, principal: Optional[Principal], meta: Optional[RequestMeta] = None
    ) -> None:
        """Logout: end the caller's own session."""
        if principal is None:
            raise Unauthorized("Authentication required")
        if principal.session_id is None:
            return
        async with self._store.transaction() as tx:
            session = await self.get_live_session(tx, principal.session_id)
            if session is None:
                return
            await self._end(tx, session, principal.id, AuditAction.SESSION_ENDED, meta)

    async def _end(
        self,
        tx: IdentityTransaction,
        session: Session,
        actor_id: str,
        action: str,
        meta: Optional[RequestMeta],
    ) -> None:
        before = session.snapshot()
        session.is_active = False
        session.ended_at = self._clock()
        await tx.save_session(session)
        await self._audit.record(
            tx,
            actor_id=actor_id,
            action=action,
            entity_type=EntityType.SESSION,
            entity_id=session.id,
            target_user_id=session.user_id,
            before=before,
            after=session.snapshot(),
            request_meta=meta,
        )
