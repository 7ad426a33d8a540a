"""Domain model tests: closed permission set, risk bounds, request lifecycle, lazy expiry helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from dashboard_iam.domain.exceptions import RequestNotPending, ValidationFailed
from dashboard_iam.domain.models.audit import HeuristicRiskScore
from dashboard_iam.domain.models.governance import ChangeRequest, ChangeType, RequestStatus
from dashboard_iam.domain.models.identity import (
    Permission,
    RoleAssignment,
    User,
    parse_permissions,
)
from dashboard_iam.domain.models.session import Session

NOW = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def _request(**overrides) -> ChangeRequest:
    fields = dict(
        id="cr-1",
        requester_id="u-a",
        target_user_id="u-t",
        change_type=ChangeType.ROLE_SET_UPDATE,
        proposed_changes={"role_ids": ["r2"]},
        current_values={"role_ids": ["r1"]},
        justification="quarterly access review",
        status=RequestStatus.PENDING,
        created_at=NOW,
        expires_at=NOW + timedelta(hours=72),
    )
    fields.update(overrides)
    return ChangeRequest(**fields)


def test_parse_permissions_accepts_known_strings():
    assert parse_permissions(["user:read", "admin:*"]) == frozenset(
        {Permission.USER_READ, Permission.ADMIN_ALL}
    )


def test_parse_permissions_rejects_unknown_strings():
    with pytest.raises(ValidationFailed) as exc:
        parse_permissions(["user:read", "users.manage_roles"])
    assert "users.manage_roles" in exc.value.message


@pytest.mark.parametrize("value", [-0.01, 1.01])
def test_risk_score_out_of_bounds_rejected(value):
    with pytest.raises(ValueError):
        HeuristicRiskScore(value)


def test_risk_score_anomalous_only_strictly_above_threshold():
    assert HeuristicRiskScore(0.7).is_anomalous(0.7) is False
    assert HeuristicRiskScore(0.71).is_anomalous(0.7) is True


def test_change_request_pending_to_approved():
    request = _request()
    request.transition_to(RequestStatus.APPROVED, at=NOW, by="u-b")
    assert request.status == RequestStatus.APPROVED
    assert request.decided_by == "u-b"


@pytest.mark.parametrize(
    "terminal", [RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.EXPIRED]
)
def test_change_request_terminal_states_are_final(terminal):
    request = _request(status=terminal)
    with pytest.raises(RequestNotPending):
        request.transition_to(RequestStatus.APPROVED, at=NOW, by="u-b")


def test_change_request_is_expired_only_while_pending():
    request = _request(expires_at=NOW - timedelta(seconds=1))
    assert request.is_expired(NOW) is True
    request.status = RequestStatus.REJECTED
    assert request.is_expired(NOW) is False


def test_role_assignment_effective_rules():
    base = dict(id="a", user_id="u", role_id="r", assigned_by=None, assigned_at=NOW)
    assert RoleAssignment(**base).is_effective(NOW)
    assert not RoleAssignment(**base, is_active=False).is_effective(NOW)
    assert not RoleAssignment(**base, expires_at=NOW).is_effective(NOW)
    assert RoleAssignment(**base, expires_at=NOW + timedelta(minutes=1)).is_effective(NOW)


def test_user_lock_and_snapshot_without_hash():
    user = User(id="u", username="ann", email="ann@corp.example", password_hash="secret")
    assert not user.is_locked(NOW)
    user.locked_until = NOW + timedelta(minutes=30)
    assert user.is_locked(NOW)
    assert "password_hash" not in user.snapshot()


def test_session_reads_absent_after_expiry():
    session = Session(
        id="s",
        user_id="u",
        created_at=NOW,
        expires_at=NOW + timedelta(hours=8),
        last_activity_at=NOW,
    )
    assert session.is_live(NOW)
    assert not session.is_live(NOW + timedelta(hours=8))
