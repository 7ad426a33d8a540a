# Application layer: services that orchestrate domain, governance and the identity store.

from dashboard_iam.application.identity_store import (
    IdentityStore,
    IdentityTransaction,
    UserQuery,
)

__all__ = [
    "IdentityStore",
    "IdentityTransaction",
    "UserQuery",
]
