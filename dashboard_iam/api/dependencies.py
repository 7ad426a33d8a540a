"""FastAPI dependency injection: identity services, current principal, request metadata, correlation_id."""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Callable, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dashboard_iam.application.auth_service import AuthService
from dashboard_iam.application.identity_store import IdentityStore
from dashboard_iam.application.role_service import RoleService
from dashboard_iam.application.sessions import SessionRegistry
from dashboard_iam.application.user_service import UserService
from dashboard_iam.config.settings import AppSettings, get_settings
from dashboard_iam.core.context import actor_id_ctx
from dashboard_iam.domain.clock import utc_now
from dashboard_iam.domain.exceptions import Unauthorized
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.governance.anomaly_scorer import AnomalyScorer
from dashboard_iam.governance.audit_trail import AuditTrailQueries, AuditTrailRecorder
from dashboard_iam.governance.change_governance import ChangeGovernanceEngine, GovernancePolicy
from dashboard_iam.governance.provisioning import JitProvisioningGate, rules_from_settings
from dashboard_iam.scalability.rate_limiter import (
    InMemoryRateLimitBackend,
    LoginThrottle,
    RateLimitBackend,
    RedisRateLimitBackend,
)
from dashboard_iam.security.access_guard import AccessGuard, Principal
from dashboard_iam.security.permissions import PermissionResolver

FORWARDED_FOR_HEADER = "X-Forwarded-For"


@dataclass
class IdentityServices:
    """Everything a router needs, wired once per process."""

    store: IdentityStore
    recorder: AuditTrailRecorder
    audit: AuditTrailQueries
    governance: ChangeGovernanceEngine
    provisioning: JitProvisioningGate
    sessions: SessionRegistry
    auth: AuthService
    users: UserService
    roles: RoleService


def build_store(settings: AppSettings) -> IdentityStore:
    if settings.store_backend == "sql":
        from dashboard_iam.infrastructure.database.identity_store import SqlIdentityStore
        from dashboard_iam.infrastructure.database.session import get_sessionmaker

        return SqlIdentityStore(get_sessionmaker())
    from dashboard_iam.infrastructure.memory.identity_store import InMemoryIdentityStore

    return InMemoryIdentityStore()


def build_rate_limit_backend(settings: AppSettings) -> RateLimitBackend:
    if settings.rate_limit_backend == "redis":
        from dashboard_iam.infrastructure.cache.redis_client import RedisClient

        return RedisRateLimitBackend(RedisClient(settings.redis_url))
    return InMemoryRateLimitBackend()


def build_services(
    settings: AppSettings,
    store: Optional[IdentityStore] = None,
    rate_limit_backend: Optional[RateLimitBackend] = None,
    clock: Callable[[], datetime] = utc_now,
) -> IdentityServices:
    store = store or build_store(settings)
    guard = AccessGuard()
    recorder = AuditTrailRecorder(anomaly_threshold=settings.anomaly_threshold, clock=clock)
    scorer = AnomalyScorer(
        timezone_name=settings.admin_timezone,
        business_hours_start=settings.business_hours_start,
        business_hours_end=settings.business_hours_end,
    )
    provisioning = JitProvisioningGate(
        store,
        recorder,
        scorer,
        rules_from_settings(settings.provisioning_rules),
        pending_approval_ttl_days=settings.pending_approval_ttl_days,
        clock=clock,
    )
    sessions = SessionRegistry(
        store, guard, recorder, default_ttl_hours=settings.session_ttl_hours, clock=clock
    )
    throttle = LoginThrottle(
        rate_limit_backend or build_rate_limit_backend(settings),
        attempts_per_window=settings.login_attempts_per_window,
        window_seconds=settings.login_window_seconds,
    )
    return IdentityServices(
        store=store,
        recorder=recorder,
        audit=AuditTrailQueries(store, guard, clock=clock),
        governance=ChangeGovernanceEngine(
            store, guard, recorder, scorer, GovernancePolicy.from_settings(settings), clock=clock
        ),
        provisioning=provisioning,
        sessions=sessions,
        auth=AuthService(
            store,
            sessions,
            recorder,
            throttle,
            provisioning=provisioning,
            max_failed_logins=settings.max_failed_logins,
            lockout_minutes=settings.lockout_minutes,
            clock=clock,
        ),
        users=UserService(
            store,
            guard,
            recorder,
            scorer,
            super_admin_quorum=settings.super_admin_quorum,
            clock=clock,
        ),
        roles=RoleService(store, guard, recorder, clock=clock),
    )


_services: IdentityServices | None = None


def get_services() -> IdentityServices:
    """Return singleton service container."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


_bearer = HTTPBearer(auto_error=False)


async def get_current_principal(
    request: Request,
    services: Annotated[IdentityServices, Depends(get_services)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)] = None,
) -> Principal:
    """Bearer token -> live session -> active user -> grants resolved for this request only."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Authentication required")
    resolver = PermissionResolver(services.store)
    principal = await services.auth.authenticate(credentials.credentials, resolver)
    request.state.actor_id = principal.id
    request.state.session_id = principal.session_id
    actor_id_ctx.set(principal.id)
    return principal


def client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> Optional[str]:
    """Socket peer, or the nearest untrusted X-Forwarded-For hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    trusted = frozenset(trusted_proxies)
    if peer is None or peer not in trusted:
        return peer
    forwarded = request.headers.get(FORWARDED_FOR_HEADER)
    hops = [hop.strip() for hop in (forwarded or "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def get_client_meta(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> RequestMeta:
    """Network metadata for unauthenticated endpoints."""
    return RequestMeta(
        ip_address=client_ip(request, settings.trusted_proxies),
        user_agent=request.headers.get("user-agent"),
    )


def get_request_meta(
    request: Request,
    principal: Annotated[Principal, Depends(get_current_principal)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> RequestMeta:
    return RequestMeta(
        ip_address=client_ip(request, settings.trusted_proxies),
        user_agent=request.headers.get("user-agent"),
        session_id=principal.session_id,
    )


def get_correlation_id(request: Request) -> str:
    """Extract correlation_id from request.state (set by middleware)."""
    return getattr(request.state, "correlation_id", "") or ""


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
Services = Annotated[IdentityServices, Depends(get_services)]
Meta = Annotated[RequestMeta, Depends(get_request_meta)]
