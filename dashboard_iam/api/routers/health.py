# dashboard_iam/api/routers/health.py

import logging

from fastapi import APIRouter, Request

from dashboard_iam.api.dependencies import Services
from dashboard_iam.config.settings import get_settings
from dashboard_iam.domain.exceptions import StoreError
from dashboard_iam.domain.models.identity import SUPER_ADMIN

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(request: Request, services: Services):
    """Liveness plus identity store readiness (reachable and seeded)."""
    settings = get_settings()
    try:
        async with services.store.transaction() as tx:
            seeded = await tx.get_role_by_name(SUPER_ADMIN) is not None
    except StoreError:
        logger.warning("health_store_unreachable", extra={"store_backend": settings.store_backend})
        seeded = False
    return {
        "status": "ok" if seeded else "degraded",
        "store_backend": settings.store_backend,
        "roles_seeded": seeded,
        "correlation_id": request.state.correlation_id,
        "environment": settings.environment,
        "version": settings.version,
    }
