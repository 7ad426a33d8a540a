"""Heuristic risk scoring: additive factors, saturation at 1.0, time-zone aware off-hours."""

from datetime import datetime, timezone

import pytest

from dashboard_iam.governance.anomaly_scorer import (
    AnomalyScorer,
    ScoringContext,
    recent_privileged_actions,
)

NOON = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)
MIDNIGHT = datetime(2025, 3, 4, 2, 30, tzinfo=timezone.utc)


@pytest.fixture
def scorer():
    return AnomalyScorer()


def test_routine_action_scores_zero(scorer):
    risk = scorer.score("u1", "USER_UPDATED", ScoringContext(occurred_at=NOON))
    assert risk.value == 0.0
    assert risk.factors == ()


def test_off_hours_adds_weight(scorer):
    risk = scorer.score("u1", "USER_UPDATED", ScoringContext(occurred_at=MIDNIGHT))
    assert risk.value == 0.3
    assert risk.factors == ("off_hours",)


def test_business_hour_boundaries(scorer):
    assert scorer.is_off_hours(NOON.replace(hour=5, minute=59))
    assert not scorer.is_off_hours(NOON.replace(hour=6, minute=0))
    assert not scorer.is_off_hours(NOON.replace(hour=21, minute=59))
    assert scorer.is_off_hours(NOON.replace(hour=22, minute=0))


def test_admin_timezone_shifts_business_hours():
    tokyo = AnomalyScorer(timezone_name="Asia/Tokyo")
    # 12:00 UTC is 21:00 in Tokyo; 14:00 UTC is 23:00.
    assert not tokyo.is_off_hours(NOON)
    assert tokyo.is_off_hours(NOON.replace(hour=14))


def test_escalation_only_counts_new_roles(scorer):
    same = ScoringContext(
        occurred_at=NOON,
        previous_role_ids=frozenset({"r1", "r2"}),
        proposed_role_ids=frozenset({"r1"}),
    )
    assert scorer.score("u1", "X", same).value == 0.0

    grant = ScoringContext(
        occurred_at=NOON,
        previous_role_ids=frozenset({"r1"}),
        proposed_role_ids=frozenset({"r2"}),
    )
    risk = scorer.score("u1", "X", grant)
    assert risk.value == 0.4
    assert "privilege_escalation" in risk.factors


def test_off_hours_escalation_is_exactly_threshold(scorer):
    context = ScoringContext(
        occurred_at=MIDNIGHT,
        previous_role_ids=frozenset(),
        proposed_role_ids=frozenset({"r2"}),
    )
    risk = scorer.score("u1", "X", context)
    assert risk.value == 0.7
    assert not risk.is_anomalous(0.7)


def test_bulk_by_flag_or_by_count(scorer):
    assert scorer.score("u1", "X", ScoringContext(occurred_at=NOON, is_bulk=True)).value == 0.3
    assert scorer.score("u1", "X", ScoringContext(occurred_at=NOON, target_count=4)).value == 0.3
    assert scorer.score("u1", "X", ScoringContext(occurred_at=NOON, target_count=3)).value == 0.0


def test_many_roles_counts_as_bulk(scorer):
    context = ScoringContext(
        occurred_at=NOON,
        previous_role_ids=frozenset({"a", "b", "c", "d"}),
        proposed_role_ids=frozenset({"a", "b", "c", "d"}),
    )
    assert scorer.score("u1", "X", context).factors == ("bulk_operation",)


def test_all_factors_saturate_at_one(scorer):
    context = ScoringContext(
        occurred_at=MIDNIGHT,
        proposed_role_ids=frozenset({"a", "b", "c", "d"}),
        is_bulk=True,
        recent_privileged_actions=5,
    )
    risk = scorer.score("u1", "X", context)
    assert risk.value == 1.0
    assert len(risk.factors) == 4
    assert risk.is_anomalous(0.7)


async def test_recent_activity_reads_actor_audit_window(services, clock, make_user):
    admin = await make_user("ops")
    async with services.store.transaction() as tx:
        assert await recent_privileged_actions(tx, admin.id, clock()) == 0
        await services.recorder.record(
            tx, actor_id=admin.id, action="USER_UPDATED", entity_type="USER", entity_id="x"
        )
    clock.advance(hours=1)
    async with services.store.transaction() as tx:
        assert await recent_privileged_actions(tx, admin.id, clock()) == 1
    clock.advance(hours=24)
    async with services.store.transaction() as tx:
        assert await recent_privileged_actions(tx, admin.id, clock()) == 0


async def test_recent_activity_ignores_login_logout_and_self_service(services, clock, make_user):
    admin = await make_user("ops2")
    async with services.store.transaction() as tx:
        for action in ("LOGIN_SUCCEEDED", "LOGIN_FAILED", "SESSION_ENDED", "USER_PROFILE_UPDATED"):
            await services.recorder.record(
                tx, actor_id=admin.id, action=action, entity_type="USER", entity_id=admin.id
            )
    async with services.store.transaction() as tx:
        assert await recent_privileged_actions(tx, admin.id, clock()) == 0
        await services.recorder.record(
            tx, actor_id=admin.id, action="BULK_SUSPEND", entity_type="USER", entity_id="x"
        )
    async with services.store.transaction() as tx:
        assert await recent_privileged_actions(tx, admin.id, clock()) == 1
