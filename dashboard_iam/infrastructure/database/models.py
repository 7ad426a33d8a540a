# dashboard_iam/infrastructure/database/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from dashboard_iam.infrastructure.database.session import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_suspended = Column(Boolean, nullable=False, default=False)
    is_external = Column(Boolean, nullable=False, default=False)
    external_provider = Column(String(64), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    session_timeout_hours = Column(Integer, nullable=False, default=8)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class RoleRow(Base):
    __tablename__ = "roles"

    id = Column(String(32), primary_key=True)
    name = Column(String(64), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    permissions = Column(JsonType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RoleAssignmentRow(Base):
    __tablename__ = "user_roles"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(32), ForeignKey("roles.id"), nullable=False, index=True)
    assigned_by = Column(String(32), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ChangeRequestRow(Base):
    __tablename__ = "user_change_requests"

    id = Column(String(32), primary_key=True)
    requester_id = Column(String(32), nullable=False, index=True)
    target_user_id = Column(String(32), nullable=False, index=True)
    change_type = Column(String(32), nullable=False)
    proposed_changes = Column(JsonType, nullable=False)
    current_values = Column(JsonType, nullable=True)
    justification = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    emergency = Column(Boolean, nullable=False, default=False)
    risk_score = Column(Float, nullable=False, default=0.0)
    is_anomalous = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    decided_by = Column(String(32), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decision_reason = Column(Text, nullable=True)


class PendingApprovalRow(Base):
    __tablename__ = "pending_user_approvals"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(64), nullable=False)
    email = Column(String(255), nullable=False)
    raw_claims = Column(JsonType, nullable=False)
    proposed_role_ids = Column(JsonType, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    decided_by = Column(String(32), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decision_reason = Column(Text, nullable=True)


class SessionRow(Base):
    __tablename__ = "user_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)


class AuditLogRow(Base):
    """Append-only. The store exposes no update or delete path for this table."""

    __tablename__ = "user_audit_log"

    id = Column(String(32), primary_key=True)
    actor_id = Column(String(64), nullable=False, index=True)
    target_user_id = Column(String(32), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    before_values = Column(JsonType, nullable=True)
    after_values = Column(JsonType, nullable=True)
    change_summary = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    session_id = Column(String(64), nullable=True)
    risk_score = Column(Float, nullable=False, default=0.0)
    is_anomalous = Column(Boolean, nullable=False, default=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
