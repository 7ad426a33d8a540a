"""Change requests API router: review queue and two-party decisions (SUPER_ADMIN)."""

from typing import Optional

from fastapi import APIRouter

from dashboard_iam.api.dependencies import CurrentPrincipal, Meta, Services
from dashboard_iam.domain.exceptions import ValidationFailed
from dashboard_iam.domain.models.governance import RequestStatus
from dashboard_iam.domain.models.identity import SUPER_ADMIN
from dashboard_iam.domain.schemas.identity import ChangeRequestResponse, DecisionRequest
from dashboard_iam.security.access_guard import AccessGuard

router = APIRouter()


def parse_status(status: Optional[str]) -> Optional[RequestStatus]:
    """`all` lists every status; default is PENDING."""
    if status is None:
        return RequestStatus.PENDING
    if status.lower() == "all":
        return None
    try:
        return RequestStatus(status.upper())
    except ValueError as e:
        raise ValidationFailed(f"Unknown status: {status}") from e


@router.get("/", response_model=list[ChangeRequestResponse])
async def list_change_requests(
    principal: CurrentPrincipal, services: Services, status: Optional[str] = None
):
    requests = await services.governance.list_change_requests(principal, parse_status(status))
    return [ChangeRequestResponse.from_domain(r) for r in requests]


@router.post("/{request_id}/decision", response_model=ChangeRequestResponse)
async def decide_change_request(
    request_id: str,
    body: DecisionRequest,
    principal: CurrentPrincipal,
    services: Services,
    meta: Meta,
):
    request = await services.governance.process_change_request(
        principal, request_id, body.action, body.reason, meta=meta
    )
    return ChangeRequestResponse.from_domain(request)


@router.post("/expire")
async def expire_stale_requests(principal: CurrentPrincipal, services: Services):
    """Sweep overdue change requests and pending approvals to EXPIRED."""
    AccessGuard().require_role(principal, SUPER_ADMIN)
    return {"expired": await services.governance.expire_stale_requests()}
