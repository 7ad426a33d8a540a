"""Users API router: CRUD, role changes, bulk actions, sessions."""

from typing import Optional

from fastapi import APIRouter, Query, Response

from dashboard_iam.api.dependencies import CurrentPrincipal, Meta, Services
from dashboard_iam.domain.schemas.identity import (
    AuditEntryResponse,
    BulkUserActionRequest,
    ChangeRequestResponse,
    CreateUserRequest,
    RoleResponse,
    RoleUpdateResponse,
    SessionResponse,
    UpdateUserRequest,
    UpdateUserRolesRequest,
    UserDetailResponse,
    UserPageResponse,
    UserResponse,
)

router = APIRouter()


@router.get("/", response_model=UserPageResponse)
async def list_users(
    principal: CurrentPrincipal,
    services: Services,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    result = await services.users.list_users(
        principal, search=search, status=status, page=page, limit=limit
    )
    return UserPageResponse(
        items=[UserResponse.from_domain(s.user, list(s.roles)) for s in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.post("/", response_model=UserResponse, status_code=201)
async def create_user(
    body: CreateUserRequest, principal: CurrentPrincipal, services: Services, meta: Meta
):
    summary = await services.users.create_user(
        principal,
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role_names=body.roles,
        meta=meta,
    )
    return UserResponse.from_domain(summary.user, list(summary.roles))


@router.post("/bulk", response_model=list[UserResponse])
async def bulk_action(
    body: BulkUserActionRequest, principal: CurrentPrincipal, services: Services, meta: Meta
):
    users = await services.users.bulk_action(principal, body.user_ids, body.action, meta)
    return [UserResponse.from_domain(u) for u in users]


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user(user_id: str, principal: CurrentPrincipal, services: Services):
    detail = await services.users.get_user(principal, user_id)
    return UserDetailResponse(
        user=UserResponse.from_domain(detail.user, list(detail.roles)),
        roles=[RoleResponse.from_domain(r) for r in detail.roles],
        recent_activity=[AuditEntryResponse.from_domain(e) for e in detail.recent_activity],
        active_sessions=[SessionResponse.from_domain(s) for s in detail.active_sessions],
    )


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    body: UpdateUserRequest,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
):
    user = await services.users.update_user(principal, user_id, meta=meta, **body.model_dump())
    return UserResponse.from_domain(user)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
    hard: bool = False,
):
    """Soft delete by default; `?hard=true` purges (SUPER_ADMIN only)."""
    await services.governance.delete_user(principal, user_id, hard=hard, meta=meta)
    return Response(status_code=204)


@router.put("/{user_id}/roles", response_model=RoleUpdateResponse)
async def update_user_roles(
    user_id: str,
    body: UpdateUserRolesRequest,
    response: Response,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
):
    """200 when applied immediately, 202 when queued as a change request."""
    outcome = await services.governance.update_user_roles(
        principal,
        user_id,
        body.role_ids,
        body.justification,
        emergency=body.emergency,
        meta=meta,
    )
    if not outcome.applied:
        response.status_code = 202
    return RoleUpdateResponse(
        applied=outcome.applied,
        role_ids=outcome.role_ids,
        change_request=(
            ChangeRequestResponse.from_domain(outcome.change_request)
            if outcome.change_request
            else None
        ),
    )


@router.get("/{user_id}/sessions", response_model=list[SessionResponse])
async def list_user_sessions(user_id: str, principal: CurrentPrincipal, services: Services):
    sessions = await services.sessions.list_active_sessions(principal, user_id)
    return [SessionResponse.from_domain(s) for s in sessions]
