"""Deterministic heuristic risk scoring for administrative actions. No randomness, no model."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet
from zoneinfo import ZoneInfo

from dashboard_iam.application.identity_store import IdentityTransaction
from dashboard_iam.domain.models.audit import HeuristicRiskScore
from dashboard_iam.governance.audit_trail import PRIVILEGED_ACTIONS

logger = logging.getLogger(__name__)

# Factor weights; the sum saturates at 1.0.
OFF_HOURS_WEIGHT = 0.3
RECENT_ACTIVITY_WEIGHT = 0.2
ESCALATION_WEIGHT = 0.4
BULK_WEIGHT = 0.3
MAX_SCORE = 1.0

BULK_THRESHOLD = 3
RECENT_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class ScoringContext:
    """Features of one proposed action."""

    occurred_at: datetime
    previous_role_ids: FrozenSet[str] = frozenset()
    proposed_role_ids: FrozenSet[str] = frozenset()
    target_count: int = 1
    is_bulk: bool = False
    recent_privileged_actions: int = 0


async def recent_privileged_actions(
    tx: IdentityTransaction, actor_id: str, now: datetime
) -> int:
    """Privileged audit entries written by the actor in the last 24 hours."""
    return await tx.count_audit(actor_id, now - RECENT_WINDOW, actions=PRIVILEGED_ACTIONS)


class AnomalyScorer:
    """
    Additive heuristic in [0, 1]:
    +0.3 outside business hours (admin time zone), +0.2 other privileged actions in 24h,
    +0.4 grants a role the target did not hold, +0.3 bulk or more than 3 roles/targets.
    Advisory only; never blocks.
    """

    def __init__(
        self,
        timezone_name: str = "UTC",
        business_hours_start: int = 6,
        business_hours_end: int = 22,
    ) -> None:
        self._tz = ZoneInfo(timezone_name)
        self._start = business_hours_start
        self._end = business_hours_end

    def is_off_hours(self, moment: datetime) -> bool:
        hour = moment.astimezone(self._tz).hour
        return hour < self._start or hour >= self._end

    def score(self, actor_id: str, action: str, context: ScoringContext) -> HeuristicRiskScore:
        factors: list[str] = []
        total = 0.0
        if self.is_off_hours(context.occurred_at):
            total += OFF_HOURS_WEIGHT
            factors.append("off_hours")
        if context.recent_privileged_actions > 0:
            total += RECENT_ACTIVITY_WEIGHT
            factors.append("recent_privileged_activity")
        if context.proposed_role_ids - context.previous_role_ids:
            total += ESCALATION_WEIGHT
            factors.append("privilege_escalation")
        if (
            context.is_bulk
            or context.target_count > BULK_THRESHOLD
            or len(context.proposed_role_ids) > BULK_THRESHOLD
        ):
            total += BULK_WEIGHT
            factors.append("bulk_operation")
        # round() keeps 0.3 + 0.4 at exactly 0.7 so the > threshold test is stable.
        value = round(min(total, MAX_SCORE), 4)
        logger.debug(
            "risk_scored",
            extra={"actor": actor_id, "action": action, "risk_score": value, "factors": factors},
        )
        return HeuristicRiskScore(value=value, factors=tuple(factors))
