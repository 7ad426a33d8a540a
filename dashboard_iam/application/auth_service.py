"""Authentication service: register, login (throttle + lockout), JIT login, bearer authentication. No FastAPI."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from dashboard_iam.application.identity_store import IdentityStore
from dashboard_iam.application.sessions import SessionRegistry
from dashboard_iam.domain.clock import new_id, utc_now
from dashboard_iam.domain.exceptions import (
    AccountLocked,
    DuplicateIdentity,
    RateLimited,
    Unauthorized,
)
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.models.governance import PendingApproval
from dashboard_iam.domain.models.identity import READER, RoleAssignment, User
from dashboard_iam.domain.models.session import Session
from dashboard_iam.domain.validators.identity_validator import (
    validate_email,
    validate_password,
    validate_username,
)
from dashboard_iam.governance.audit_trail import AuditAction, AuditTrailRecorder, EntityType
from dashboard_iam.governance.provisioning import JitProvisioningGate
from dashboard_iam.scalability.rate_limiter import LoginThrottle
from dashboard_iam.security.access_guard import Principal
from dashboard_iam.security.passwords import hash_password, verify_password
from dashboard_iam.security.permissions import (
    EffectiveGrants,
    PermissionResolver,
    resolve_grants,
)
from dashboard_iam.security.tokens import decode_access_token, issue_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    user: User
    session: Session
    grants: EffectiveGrants


@dataclass(frozen=True)
class ExternalLoginResult:
    user: User
    created: bool
    login: Optional[LoginResult] = None
    pending_approval: Optional[PendingApproval] = None


class AuthService:
    """
    Credential checks, lockout bookkeeping and session issuance. Failed attempts are
    counted per account; the throttle counts attempts per client address.
    """

    def __init__(
        self,
        store: IdentityStore,
        sessions: SessionRegistry,
        recorder: AuditTrailRecorder,
        throttle: LoginThrottle,
        provisioning: Optional[JitProvisioningGate] = None,
        max_failed_logins: int = 5,
        lockout_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._audit = recorder
        self._throttle = throttle
        self._provisioning = provisioning
        self._max_failed = max_failed_logins
        self._lockout = timedelta(minutes=lockout_minutes)
        self._clock = clock

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> User:
        """Self-service sign-up. New accounts get the READER role."""
        username = validate_username(username)
        email = validate_email(email)
        validate_password(password)
        password_hash = hash_password(password)

        now = self._clock()
        async with self._store.transaction() as tx:
            if await tx.find_user_by_email(email) is not None:
                raise DuplicateIdentity("Email already registered", {"field": "email"})
            if await tx.find_user_by_username(username) is not None:
                raise DuplicateIdentity("Username already taken", {"field": "username"})
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
            reader = await tx.get_role_by_name(READER)
            role_ids: list[str] = []
            if reader is not None and reader.is_active:
                await tx.add_assignment(
                    RoleAssignment(
                        id=new_id(),
                        user_id=user.id,
                        role_id=reader.id,
                        assigned_by=user.id,
                        assigned_at=now,
                    )
                )
                role_ids.append(reader.id)
            await self._audit.record(
                tx,
                actor_id=user.id,
                action=AuditAction.USER_REGISTERED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                after={**user.snapshot(), "role_ids": role_ids},
                request_meta=meta,
            )
        logger.info("user_registered", extra={"user_id": user.id})
        return user

    async def login(
        self,
        identifier: str,
        password: str,
        meta: Optional[RequestMeta] = None,
    ) -> LoginResult:
        """Username or email plus password. Locks the account after repeated failures."""
        meta = meta or RequestMeta()
        # Step 1: per-origin throttle
        if not await self._throttle.allow_attempt(meta.ip_address or "unknown"):
            raise RateLimited(
                "Too many login attempts, try again later",
                {"retry_after_seconds": self._throttle.window_seconds},
            )

        # Step 2: look up the account
        now = self._clock()
        async with self._store.transaction() as tx:
            user = await tx.find_user_by_username(identifier)
            if user is None:
                user = await tx.find_user_by_email(identifier)
        if user is None:
            logger.warning("login_failed_unknown_identity")
            raise Unauthorized("Invalid credentials")
        if user.is_locked(now):
            raise AccountLocked("Account temporarily locked", user.locked_until)
        if not user.is_active or user.is_suspended:
            raise Unauthorized("Account is inactive or suspended")

        # Step 3: verify outside any transaction
        if not verify_password(user.password_hash, password):
            await self._record_failure(user.id, meta)
            raise Unauthorized("Invalid credentials")

        # Step 4: reset counters, open the session, audit
        async with self._store.transaction() as tx:
            user = await tx.get_user(user.id, for_update=True)
            if user is None:
                raise Unauthorized("Invalid credentials")
            result = await self._open_login(tx, user, meta, AuditAction.LOGIN_SUCCEEDED)
        logger.info("login_succeeded", extra={"user_id": user.id, "session_id": result.session.id})
        return result

    async def login_external(
        self,
        claims: dict[str, Any],
        provider: str,
        meta: Optional[RequestMeta] = None,
    ) -> ExternalLoginResult:
        """
        Claims come from an identity provider the front door already verified.
        Unknown identities are provisioned first; inactive ones get no session.
        """
        if self._provisioning is None:
            raise Unauthorized("External login is not configured")
        provisioned = await self._provisioning.provision_external_user(claims, provider, meta)
        user = provisioned.user
        if not user.is_active or user.is_suspended:
            return ExternalLoginResult(
                user=user,
                created=provisioned.created,
                pending_approval=provisioned.pending_approval,
            )
        async with self._store.transaction() as tx:
            current = await tx.get_user(user.id, for_update=True)
            if current is None:
                raise Unauthorized("Identity vanished during login")
            login = await self._open_login(tx, current, meta, AuditAction.LOGIN_SUCCEEDED)
        return ExternalLoginResult(user=login.user, created=provisioned.created, login=login)

    async def _open_login(self, tx, user: User, meta: Optional[RequestMeta], action: str) -> LoginResult:
        now = self._clock()
        user.failed_attempts = 0
        user.locked_until = None
        user.last_login_at = now
        user.updated_at = now
        await tx.save_user(user)
        session = await self._sessions.open_session(tx, user, meta)
        grants = await resolve_grants(tx, user.id, now)
        await self._audit.record(
            tx,
            actor_id=user.id,
            action=action,
            entity_type=EntityType.SESSION,
            entity_id=session.id,
            target_user_id=user.id,
            after=session.snapshot(),
            request_meta=meta,
        )
        token = issue_access_token(user.id, session.id, session.expires_at)
        return LoginResult(access_token=token, user=user, session=session, grants=grants)

    async def _record_failure(self, user_id: str, meta: RequestMeta) -> None:
        now = self._clock()
        async with self._store.transaction() as tx:
            user = await tx.get_user(user_id, for_update=True)
            if user is None:
                return
            before = {"failed_attempts": user.failed_attempts}
            user.failed_attempts += 1
            if user.failed_attempts >= self._max_failed:
                user.locked_until = now + self._lockout
            user.updated_at = now
            await tx.save_user(user)
            await self._audit.record(
                tx,
                actor_id=user.id,
                action=AuditAction.LOGIN_FAILED,
                entity_type=EntityType.USER,
                entity_id=user.id,
                target_user_id=user.id,
                before=before,
                after={
                    "failed_attempts": user.failed_attempts,
                    "locked_until": user.locked_until.isoformat() if user.locked_until else None,
                },
                request_meta=meta,
            )
        logger.warning(
            "login_failed",
            extra={"user_id": user_id, "failed_attempts": user.failed_attempts},
        )

    async def authenticate(
        self, token: str, resolver: Optional[PermissionResolver] = None
    ) -> Principal:
        """Bearer token -> principal. Grants come from the per-request resolver."""
        claims = decode_access_token(token)
        async with self._store.transaction() as tx:
            session = await self._sessions.get_live_session(tx, claims.session_id)
            if session is None or session.user_id != claims.user_id:
                raise Unauthorized("Session expired or revoked")
            user = await tx.get_user(claims.user_id)
            if user is None or not user.is_active or user.is_suspended:
                raise Unauthorized("Account is inactive or suspended")
            await self._sessions.touch(tx, session)
        resolver = resolver or PermissionResolver(self._store, self._clock)
        grants = await resolver.grants(user.id)
        return Principal(user=user, session_id=session.id, grants=grants)

    async def logout(self, principal: Optional[Principal], meta: Optional[RequestMeta] = None) -> None:
        await self._sessions.end_session(principal, meta)
