"""Identity and access governance exceptions. Typed, stable `kind`, no HTTP."""

from datetime import datetime
from typing import Any, Optional


class IdentityError(Exception):
    """Base for all recoverable identity-layer errors."""

    kind = "IdentityError"

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.detail = detail or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.detail}


class Unauthorized(IdentityError):
    """No valid session."""

    kind = "Unauthorized"


class Forbidden(IdentityError):
    """Valid session, missing permission or role."""

    kind = "Forbidden"


class NotFound(IdentityError):
    kind = "NotFound"


class DuplicateIdentity(IdentityError):
    """Email or username already registered."""

    kind = "DuplicateIdentity"


class AccountLocked(IdentityError):
    """Lockout window after repeated failed logins is still active."""

    kind = "AccountLocked"

    def __init__(self, message: str, locked_until: datetime) -> None:
        self.locked_until = locked_until
        super().__init__(message, {"locked_until": locked_until.isoformat()})


class SelfActionForbidden(IdentityError):
    """Self-delete, self-suspend, self-role-edit, self-approval, own-session revoke."""

    kind = "SelfActionForbidden"


SelfDeletionForbidden = SelfActionForbidden


class QuorumViolation(IdentityError):
    """Change would leave fewer SUPER_ADMINs than the quorum requires."""

    kind = "QuorumViolation"


class RequestNotPending(IdentityError):
    """Approve/reject on a request that is APPROVED, REJECTED or EXPIRED."""

    kind = "RequestNotPending"


class NoProvisioningRule(IdentityError):
    """JIT login with no rule for the provider and email domain."""

    kind = "NoProvisioningRule"


class ValidationFailed(IdentityError):
    """Malformed input (short justification, weak password, unknown role...)."""

    kind = "ValidationFailed"

    def __init__(self, message: str, issues: Optional[list[str]] = None) -> None:
        self.issues = issues or [message]
        super().__init__(message, {"issues": self.issues})


class RateLimited(IdentityError):
    """Too many login attempts from one origin inside the throttle window."""

    kind = "RateLimited"


class StoreError(IdentityError):
    """A multi-step store mutation failed and was rolled back."""

    kind = "StoreError"
