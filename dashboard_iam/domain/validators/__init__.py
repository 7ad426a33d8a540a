"""Domain validators. Pure validation functions."""

from dashboard_iam.domain.validators.identity_validator import (
    email_domain,
    validate_email,
    validate_justification,
    validate_password,
    validate_rejection_reason,
    validate_username,
)

__all__ = [
    "email_domain",
    "validate_email",
    "validate_justification",
    "validate_password",
    "validate_rejection_reason",
    "validate_username",
]
