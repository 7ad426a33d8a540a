"""Immutable audit entry and the heuristic risk score it carries."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class HeuristicRiskScore:
    """
    Bounded [0, 1] review-priority score from additive heuristics.
    Not a calibrated probability; kept distinct from any statistical model output.
    """

    value: float
    factors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.value <= 1.0:
            raise ValueError(f"risk score out of bounds: {self.value}")

    def is_anomalous(self, threshold: float) -> bool:
        return self.value > threshold


ZERO_RISK = HeuristicRiskScore(0.0)


@dataclass(frozen=True)
class RequestMeta:
    """Network/device metadata of the inbound request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class AuditLogEntry:
    """
    Immutable audit record: who, what, to which entity, before/after, when (UTC), how risky.
    Append-only; no update or delete exists anywhere in the store.
    """

    id: str
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    timestamp: datetime
    target_user_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None
    request_meta: RequestMeta = field(default_factory=RequestMeta)
    risk_score: float = 0.0
    is_anomalous: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for JSON logging and API responses."""
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "target_user_id": self.target_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "summary": self.summary,
            **self.request_meta.to_dict(),
            "risk_score": self.risk_score,
            "is_anomalous": self.is_anomalous,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AuditQuery:
    actor_id: Optional[str] = None
    target_user_id: Optional[str] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    anomalous_only: bool = False
    order_by_risk: bool = False
