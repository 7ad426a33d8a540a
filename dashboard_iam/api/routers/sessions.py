"""Sessions API router: revoke another session."""

from fastapi import APIRouter

from dashboard_iam.api.dependencies import CurrentPrincipal, Meta, Services
from dashboard_iam.domain.schemas.identity import SessionResponse

router = APIRouter()


@router.delete("/{session_id}", response_model=SessionResponse)
async def revoke_session(
    session_id: str, principal: CurrentPrincipal, services: Services, meta: Meta
):
    """The caller's own session cannot be revoked here; use /auth/logout."""
    session = await services.sessions.revoke_session(principal, session_id, meta)
    return SessionResponse.from_domain(session)
