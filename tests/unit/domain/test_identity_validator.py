"""Identity validators: password policy, justification, email, username."""

import pytest

from dashboard_iam.domain.exceptions import ValidationFailed
from dashboard_iam.domain.validators.identity_validator import (
    email_domain,
    validate_justification,
    validate_password,
    validate_rejection_reason,
    validate_username,
)


def test_strong_password_passes():
    validate_password("Sup3rSecret")


def test_weak_password_lists_every_issue():
    with pytest.raises(ValidationFailed) as exc:
        validate_password("short")
    issues = exc.value.issues
    assert any("8 characters" in i for i in issues)
    assert any("uppercase" in i for i in issues)
    assert any("digit" in i for i in issues)


def test_justification_must_meet_minimum_after_strip():
    with pytest.raises(ValidationFailed):
        validate_justification("   too short  ", 10)
    assert validate_justification("  needs reporting access ", 10) == "needs reporting access"


def test_justification_none_rejected():
    with pytest.raises(ValidationFailed):
        validate_justification(None, 10)


def test_rejection_reason_required():
    with pytest.raises(ValidationFailed):
        validate_rejection_reason("  ")


def test_email_domain_lowercased():
    assert email_domain("Alice@Corp.Example") == "corp.example"


def test_invalid_email_rejected():
    with pytest.raises(ValidationFailed):
        email_domain("not-an-email")


def test_username_minimum_length():
    with pytest.raises(ValidationFailed):
        validate_username("ab")
