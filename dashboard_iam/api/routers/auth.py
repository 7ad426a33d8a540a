"""Auth API router: register, login, logout, self-service profile."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from dashboard_iam.api.dependencies import (
    CurrentPrincipal,
    Meta,
    Services,
    get_client_meta,
)
from dashboard_iam.domain.models.audit import RequestMeta
from dashboard_iam.domain.schemas.identity import (
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    UserResponse,
)

router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(
    body: RegisterRequest,
    services: Services,
    meta: Annotated[RequestMeta, Depends(get_client_meta)],
):
    user = await services.auth.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        meta=meta,
    )
    return UserResponse.from_domain(user)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    services: Services,
    meta: Annotated[RequestMeta, Depends(get_client_meta)],
):
    """Username or email plus password. 429 when throttled, 423 when locked."""
    result = await services.auth.login(body.username, body.password, meta)
    return LoginResponse(
        access_token=result.access_token,
        expires_at=result.session.expires_at,
        user=UserResponse.from_domain(result.user, list(result.grants.roles)),
        permissions=sorted(p.value for p in result.grants.permissions),
    )


@router.post("/logout", status_code=204)
async def logout(principal: CurrentPrincipal, services: Services, meta: Meta):
    await services.auth.logout(principal, meta)
    return Response(status_code=204)


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(principal: CurrentPrincipal, services: Services):
    summary = await services.users.get_profile(principal)
    return ProfileResponse(
        user=UserResponse.from_domain(summary.user, list(summary.roles)),
        permissions=summary.permissions,
    )


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest, principal: CurrentPrincipal, services: Services, meta: Meta
):
    user = await services.users.update_profile(
        principal, first_name=body.first_name, last_name=body.last_name, meta=meta
    )
    return UserResponse.from_domain(user, list(principal.grants.roles))
