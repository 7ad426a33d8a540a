"""Governance: audit trail, anomaly scoring, change governance, JIT provisioning. No FastAPI."""

from dashboard_iam.governance.anomaly_scorer import AnomalyScorer, ScoringContext
from dashboard_iam.governance.audit_trail import (
    AuditAction,
    AuditTrailQueries,
    AuditTrailRecorder,
    EntityType,
)
from dashboard_iam.governance.change_governance import (
    ChangeGovernanceEngine,
    GovernancePolicy,
    RoleUpdateOutcome,
)
from dashboard_iam.governance.provisioning import JitProvisioningGate, ProvisioningResult

__all__ = [
    "AnomalyScorer",
    "ScoringContext",
    "AuditAction",
    "AuditTrailQueries",
    "AuditTrailRecorder",
    "EntityType",
    "ChangeGovernanceEngine",
    "GovernancePolicy",
    "RoleUpdateOutcome",
    "JitProvisioningGate",
    "ProvisioningResult",
]
