"""Roles API router: list, create, update."""

from fastapi import APIRouter

from dashboard_iam.api.dependencies import CurrentPrincipal, Meta, Services
from dashboard_iam.domain.schemas.identity import (
    CreateRoleRequest,
    RoleResponse,
    UpdateRoleRequest,
)

router = APIRouter()


@router.get("/", response_model=list[RoleResponse])
async def list_roles(
    principal: CurrentPrincipal, services: Services, include_inactive: bool = False
):
    roles = await services.roles.list_roles(principal, include_inactive=include_inactive)
    return [RoleResponse.from_domain(r) for r in roles]


@router.post("/", response_model=RoleResponse, status_code=201)
async def create_role(
    body: CreateRoleRequest, principal: CurrentPrincipal, services: Services, meta: Meta
):
    role = await services.roles.create_role(
        principal,
        name=body.name,
        description=body.description,
        permissions=body.permissions,
        meta=meta,
    )
    return RoleResponse.from_domain(role)


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    body: UpdateRoleRequest,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
):
    role = await services.roles.update_role(
        principal,
        role_id,
        description=body.description,
        permissions=body.permissions,
        is_active=body.is_active,
        meta=meta,
    )
    return RoleResponse.from_domain(role)
