"""
SQLAlchemy ORM models for the RFI evaluation tracker.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
import enum

from app.core.rbac import Role
from app.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============= ENUMS =============

class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RfiStatus(str, enum.Enum):
    NOT_RECEIVED = "NOT_RECEIVED"
    RECEIVED = "RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class FinalDecision(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class VoteValue(str, enum.Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


VENDOR_SCOPES = ("Media", "AI")


# Stored as VARCHAR + CHECK so the schema works on both Postgres and SQLite.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


RoleType = Enum(*enum_values(Role), name='userrole', native_enum=False)
ApprovalStatusType = Enum(*enum_values(ApprovalStatus), name='approvalstatus', native_enum=False)
RfiStatusType = Enum(*enum_values(RfiStatus), name='rfistatus', native_enum=False)
FinalDecisionType = Enum(*enum_values(FinalDecision), name='finaldecision', native_enum=False)
VoteValueType = Enum(*enum_values(VoteValue), name='votevalue', native_enum=False)


# ============= USERS =============

class User(Base):
    """User accounts with per-user feature permissions."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(RoleType, nullable=False, default=Role.CONTRIBUTOR.value)
    approval_status = Column(ApprovalStatusType, nullable=False, default=ApprovalStatus.PENDING.value)
    can_access_chat = Column(Boolean, nullable=False, default=False)
    can_make_direct_decision = Column(Boolean, nullable=False, default=False)
    can_print_reports = Column(Boolean, nullable=False, default=False)
    can_export_data = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_login = Column(DateTime(timezone=True))

    evaluator = relationship("Evaluator", back_populates="user", uselist=False)
    votes = relationship("VendorVote", back_populates="user")


class Evaluator(Base):
    """Scoring identity, linked 1:1 to a user."""
    __tablename__ = "evaluators"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(RoleType, nullable=False, default=Role.CONTRIBUTOR.value)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="evaluator")
    evaluations = relationship("Evaluation", back_populates="evaluator")


# ============= VENDORS =============

class Vendor(Base):
    """Vendor responding to the RFI."""
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    scopes = Column(JSON, nullable=False, default=list)
    contacts = Column(JSON, nullable=False, default=list)
    rfi_status = Column(RfiStatusType, nullable=False, default=RfiStatus.NOT_RECEIVED.value)
    rfi_received = Column(Boolean, nullable=False, default=False)
    rfi_received_at = Column(DateTime(timezone=True))
    final_decision = Column(FinalDecisionType, nullable=True)
    chat_enabled = Column(Boolean, nullable=False, default=True)
    direct_decision_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    evaluations = relationship("Evaluation", back_populates="vendor", order_by="Evaluation.created_at")
    votes = relationship("VendorVote", back_populates="vendor")
    chat_messages = relationship("ChatMessage", back_populates="vendor")


# ============= EVALUATIONS =============

class Evaluation(Base):
    """Submitted rubric scores for one (vendor, evaluator) pair."""
    __tablename__ = "evaluations"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluator_id = Column(Integer, ForeignKey("evaluators.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = Column(String(100))
    overall_score = Column(Float, nullable=False)
    submitted = Column(Boolean, nullable=False, default=True)

    # Experience (25%)
    experience_score = Column(Float, nullable=False)
    experience_remark = Column(Text, nullable=False)
    case_studies_score = Column(Float, nullable=False)
    case_studies_remark = Column(Text, nullable=False)
    domain_experience_score = Column(Float, nullable=False)
    domain_experience_remark = Column(Text, nullable=False)

    # Understanding (20%)
    approach_alignment_score = Column(Float, nullable=False)
    approach_alignment_remark = Column(Text, nullable=False)
    understanding_challenges_score = Column(Float, nullable=False)
    understanding_challenges_remark = Column(Text, nullable=False)
    solution_tailoring_score = Column(Float, nullable=False)
    solution_tailoring_remark = Column(Text, nullable=False)

    # Methodology (26%)
    strategy_alignment_score = Column(Float, nullable=False)
    strategy_alignment_remark = Column(Text, nullable=False)
    methodology_score = Column(Float, nullable=False)
    methodology_remark = Column(Text, nullable=False)
    innovative_strategies_score = Column(Float, nullable=False)
    innovative_strategies_remark = Column(Text, nullable=False)
    stakeholder_engagement_score = Column(Float, nullable=False)
    stakeholder_engagement_remark = Column(Text, nullable=False)
    tools_framework_score = Column(Float, nullable=False)
    tools_framework_remark = Column(Text, nullable=False)

    # Cost (14%)
    cost_structure_score = Column(Float, nullable=False)
    cost_structure_remark = Column(Text, nullable=False)
    cost_effectiveness_score = Column(Float, nullable=False)
    cost_effectiveness_remark = Column(Text, nullable=False)
    roi_score = Column(Float, nullable=False)
    roi_remark = Column(Text, nullable=False)

    # References (10%)
    references_score = Column(Float, nullable=False)
    references_remark = Column(Text, nullable=False)
    testimonials_score = Column(Float, nullable=False)
    testimonials_remark = Column(Text, nullable=False)
    sustainability_score = Column(Float, nullable=False)
    sustainability_remark = Column(Text, nullable=False)

    # Deliverables (5%)
    deliverables_score = Column(Float, nullable=False)
    deliverables_remark = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    vendor = relationship("Vendor", back_populates="evaluations")
    evaluator = relationship("Evaluator", back_populates="evaluations")

    __table_args__ = (
        UniqueConstraint('vendor_id', 'evaluator_id', name='uq_evaluation_vendor_evaluator'),
    )


class EvaluationDraft(Base):
    """In-progress scores, upserted by autosave until the evaluation is submitted."""
    __tablename__ = "evaluation_drafts"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    evaluator_id = Column(Integer, ForeignKey("evaluators.id", ondelete="CASCADE"), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint('vendor_id', 'evaluator_id', name='uq_draft_vendor_evaluator'),
    )


# ============= DECISIONS =============

class VendorVote(Base):
    """One accept/reject vote per (vendor, user); re-voting overwrites."""
    __tablename__ = "vendor_votes"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vote = Column(VoteValueType, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", back_populates="votes")
    user = relationship("User", back_populates="votes")

    __table_args__ = (
        UniqueConstraint('vendor_id', 'user_id', name='uq_vote_vendor_user'),
    )


# ============= CHAT =============

class ChatMessage(Base):
    """Append-only per-vendor discussion message."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    vendor = relationship("Vendor", back_populates="chat_messages")
    sender = relationship("User")
    notifications = relationship(
        "ChatNotification", back_populates="message", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_chat_messages_vendor_created', 'vendor_id', 'created_at'),
    )


class ChatNotification(Base):
    """Unread marker fanned out to each chat participant except the sender."""
    __tablename__ = "chat_notifications"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    message = relationship("ChatMessage", back_populates="notifications")

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='uq_notification_message_user'),
    )


# ============= SETTINGS & AUDIT =============

class AdminSettings(Base):
    """Global feature toggles. Singleton row with id=1."""
    __tablename__ = "admin_settings"

    id = Column(Integer, primary_key=True)
    chat_enabled = Column(Boolean, nullable=False, default=True)
    direct_decision_enabled = Column(Boolean, nullable=False, default=True)
    print_enabled = Column(Boolean, nullable=False, default=True)
    export_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    """Audit trail of mutating actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))

    user = relationship("User")
