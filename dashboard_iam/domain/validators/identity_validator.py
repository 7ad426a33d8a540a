"""Validators for identity and governance rules. Pure functions, no infrastructure or DB access."""

import re

from dashboard_iam.domain.exceptions import ValidationFailed

# Password policy (domain constants; avoid magic numbers)
PASSWORD_MIN_LENGTH = 8
USERNAME_MIN_LENGTH = 3

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password(password: str) -> None:
    """Enforce length and character-class policy. Raises ValidationFailed listing every issue."""
    issues = []
    if len(password) < PASSWORD_MIN_LENGTH:
        issues.append(f"password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        issues.append("password must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        issues.append("password must contain a lowercase letter")
    if not re.search(r"\d", password):
        issues.append("password must contain a digit")
    if issues:
        raise ValidationFailed("Password does not meet requirements", issues=issues)


def validate_justification(justification: str | None, min_length: int) -> str:
    """Role-change justification must carry at least `min_length` non-blank characters."""
    text = (justification or "").strip()
    if len(text) < min_length:
        raise ValidationFailed(
            f"justification must be at least {min_length} characters",
        )
    return text


def validate_rejection_reason(reason: str | None) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationFailed("A reason is required to reject a request")
    return text


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not _EMAIL_RE.match(email):
        raise ValidationFailed(f"Invalid email format: {email!r}")
    return email


def email_domain(email: str) -> str:
    return validate_email(email).rsplit("@", 1)[1].lower()


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if len(username) < USERNAME_MIN_LENGTH:
        raise ValidationFailed(
            f"username must be at least {USERNAME_MIN_LENGTH} characters"
        )
    return username
