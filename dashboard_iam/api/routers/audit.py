"""Audit API router: filtered audit log and anomaly review."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from dashboard_iam.api.dependencies import CurrentPrincipal, Services
from dashboard_iam.domain.models.audit import AuditQuery
from dashboard_iam.domain.schemas.identity import AuditEntryResponse, AuditPageResponse
from dashboard_iam.governance.audit_trail import MAX_PAGE_SIZE

router = APIRouter()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.get("/", response_model=AuditPageResponse)
async def list_audit_log(
    principal: CurrentPrincipal,
    services: Services,
    actor_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    anomalous_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
):
    query = AuditQuery(
        actor_id=actor_id,
        target_user_id=target_user_id,
        action=action,
        entity_type=entity_type,
        since=_as_utc(since),
        until=_as_utc(until),
        anomalous_only=anomalous_only,
    )
    result = await services.audit.list_entries(principal, query, page=page, limit=limit)
    return AuditPageResponse(
        items=[AuditEntryResponse.from_domain(e) for e in result.entries],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/anomalies", response_model=list[AuditEntryResponse])
async def list_anomalies(
    principal: CurrentPrincipal,
    services: Services,
    days: int = Query(7, ge=1, le=90),
):
    entries = await services.audit.list_anomalies(principal, days=days)
    return [AuditEntryResponse.from_domain(e) for e in entries]
