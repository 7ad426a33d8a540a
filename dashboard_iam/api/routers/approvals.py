"""Pending approvals API router: JIT-provisioned identities awaiting review (SUPER_ADMIN)."""

from typing import Optional

from fastapi import APIRouter

from dashboard_iam.api.dependencies import CurrentPrincipal, Meta, Services
from dashboard_iam.api.routers.change_requests import parse_status
from dashboard_iam.domain.schemas.identity import DecisionRequest, PendingApprovalResponse

router = APIRouter()


@router.get("/", response_model=list[PendingApprovalResponse])
async def list_pending_approvals(
    principal: CurrentPrincipal, services: Services, status: Optional[str] = None
):
    approvals = await services.governance.list_pending_approvals(principal, parse_status(status))
    return [PendingApprovalResponse.from_domain(a) for a in approvals]


@router.post("/{approval_id}/decision", response_model=PendingApprovalResponse)
async def decide_pending_approval(
    approval_id: str,
    body: DecisionRequest,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
):
    approval = await services.governance.process_pending_approval(
        principal, approval_id, body.action, body.reason, meta=meta
    )
    return PendingApprovalResponse.from_domain(approval)
