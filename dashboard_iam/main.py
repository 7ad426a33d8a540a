# dashboard_iam/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dashboard_iam.api.dependencies import get_services
from dashboard_iam.api.middleware import CorrelationIdMiddleware, RequestAuditMiddleware
from dashboard_iam.api.routers import (
    approvals,
    audit,
    auth,
    change_requests,
    health,
    roles,
    sessions,
    users,
)
from dashboard_iam.application.role_service import seed_roles
from dashboard_iam.config.logging import configure_logging
from dashboard_iam.config.settings import get_settings
from dashboard_iam.domain.exceptions import IdentityError

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Error kind -> HTTP status. Anything unlisted is a server error.
STATUS_BY_KIND = {
    "Unauthorized": 401,
    "Forbidden": 403,
    "NotFound": 404,
    "DuplicateIdentity": 409,
    "AccountLocked": 423,
    "SelfActionForbidden": 403,
    "QuorumViolation": 409,
    "RequestNotPending": 409,
    "NoProvisioningRule": 403,
    "ValidationFailed": 422,
    "RateLimited": 429,
    "StoreError": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = get_services()
    if settings.store_backend == "sql" and settings.environment != "prod":
        from dashboard_iam.infrastructure.database.session import create_schema

        await create_schema()
    await seed_roles(services.store, services.recorder)
    logger.info("startup_complete", extra={"store_backend": settings.store_backend})
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> RequestAudit.
app.add_middleware(RequestAuditMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(IdentityError)
async def identity_error_handler(request, exc: IdentityError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("identity_error", extra={"kind": exc.kind, "error": exc.message})
    headers = None
    if exc.kind == "Unauthorized":
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.kind == "RateLimited" and "retry_after_seconds" in exc.detail:
        headers = {"Retry-After": str(exc.detail["retry_after_seconds"])}
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request, exc: RequestValidationError):
    issues = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationFailed", "detail": "Request validation failed", "issues": issues},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("unexpected_error")
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "detail": "Internal server error"},
    )


# Routers: /health, /auth, /users, /roles, /sessions, /change-requests, /pending-approvals, /audit
app.include_router(health.router)
app.include_router(auth.router, prefix="/auth")
app.include_router(users.router, prefix="/users")
app.include_router(roles.router, prefix="/roles")
app.include_router(sessions.router, prefix="/sessions")
app.include_router(change_requests.router, prefix="/change-requests")
app.include_router(approvals.router, prefix="/pending-approvals")
app.include_router(audit.router, prefix="/audit")
