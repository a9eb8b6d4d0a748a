"""Lead assignment, wait queue and follow-up task models."""
import enum
import uuid
from sqlalchemy import Column, String, Float, Integer, Text, DateTime, Enum, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates
from app.core.database import Base, JSONType, utcnow
from app.models.status import (
    AssignmentStatus,
    WaitQueueStatus,
    FollowUpStatus,
    ASSIGNMENT_TRANSITIONS,
    WAIT_QUEUE_TRANSITIONS,
    FOLLOW_UP_TRANSITIONS,
    check_transition,
)


# Enum columns store member names
OPEN_ASSIGNMENT_PREDICATE = "status IN ('ACTIVE', 'CONTACTED', 'FOLLOW_UP')"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AssignmentPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FollowUpType(str, enum.Enum):
    INITIAL_CONTACT = "initial_contact"
    FOLLOW_UP = "follow_up"


class LeadAssignment(Base):
    __tablename__ = "lead_assignments"
    __transitions__ = ASSIGNMENT_TRANSITIONS
    # at most one open assignment per lead
    __table_args__ = (
        Index(
            "uq_open_assignment_customer",
            "customer_id",
            unique=True,
            postgresql_where=text(OPEN_ASSIGNMENT_PREDICATE),
            sqlite_where=text(OPEN_ASSIGNMENT_PREDICATE),
        ),
        Index(
            "uq_open_assignment_inquiry",
            "inquiry_id",
            unique=True,
            postgresql_where=text(OPEN_ASSIGNMENT_PREDICATE),
            sqlite_where=text(OPEN_ASSIGNMENT_PREDICATE),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    inquiry_id = Column(UUID(as_uuid=True), ForeignKey("inquiries.id"), nullable=True, index=True)
    sales_rep_id = Column(UUID(as_uuid=True), ForeignKey("sales_representatives.id"), nullable=False, index=True)
    status = Column(Enum(AssignmentStatus), nullable=False, default=AssignmentStatus.ACTIVE, index=True)
    priority = Column(Enum(AssignmentPriority), nullable=False, default=AssignmentPriority.MEDIUM)
    urgency = Column(Enum(Urgency), nullable=False, default=Urgency.MEDIUM)
    confidence = Column(Float, nullable=False, default=0.0)
    assignment_reason = Column(Text, nullable=True)
    lead_score = Column(Float, nullable=True)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    due_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    sales_rep = relationship("SalesRepresentative")

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("LeadAssignment", ASSIGNMENT_TRANSITIONS, self.status, value)


class WaitQueueEntry(Base):
    """A qualified lead that found no representative at assignment time."""
    __tablename__ = "lead_wait_queue"
    __transitions__ = WAIT_QUEUE_TRANSITIONS

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    inquiry_id = Column(UUID(as_uuid=True), ForeignKey("inquiries.id"), nullable=True, index=True)
    priority = Column(Integer, nullable=False, default=3)  # 1 = most urgent
    reason = Column(Text, nullable=False)
    status = Column(Enum(WaitQueueStatus), nullable=False, default=WaitQueueStatus.WAITING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    # assign_lead payload kept so the entry can be retried as-is
    criteria = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("WaitQueueEntry", WAIT_QUEUE_TRANSITIONS, self.status, value)


class FollowUpTask(Base):
    __tablename__ = "follow_up_tasks"
    __transitions__ = FOLLOW_UP_TRANSITIONS

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assignment_id = Column(UUID(as_uuid=True), ForeignKey("lead_assignments.id"), nullable=False, index=True)
    sales_rep_id = Column(UUID(as_uuid=True), ForeignKey("sales_representatives.id"), nullable=False, index=True)
    type = Column(Enum(FollowUpType), nullable=False)
    status = Column(Enum(FollowUpStatus), nullable=False, default=FollowUpStatus.PENDING, index=True)
    description = Column(String(500), nullable=True)
    due_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("FollowUpTask", FOLLOW_UP_TRANSITIONS, self.status, value)
