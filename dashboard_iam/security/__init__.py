"""Security: permission resolution, access guard, password hashing, bearer tokens. No FastAPI."""

from dashboard_iam.security.access_guard import AccessGuard, Principal
from dashboard_iam.security.permissions import EffectiveGrants, PermissionResolver

__all__ = [
    "AccessGuard",
    "EffectiveGrants",
    "PermissionResolver",
    "Principal",
]
