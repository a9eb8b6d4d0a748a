"""Lead score history model.

Rows are append-only: every recalculation inserts a new row and the latest
row per customer/inquiry is the current score.
"""
import enum
import uuid
from sqlalchemy import Column, String, Float, Boolean, Text, DateTime, Enum, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base, JSONType, utcnow


class QualificationLevel(str, enum.Enum):
    COLD = "cold"
    WARM = "warm"
    HOT = "hot"
    QUALIFIED = "qualified"


class LeadScore(Base):
    __tablename__ = "lead_scores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    inquiry_id = Column(UUID(as_uuid=True), ForeignKey("inquiries.id"), nullable=True, index=True)
    total_score = Column(Float, nullable=False)
    max_possible_score = Column(Float, nullable=False, default=100.0)
    score_percentage = Column(Float, nullable=False)
    qualification_level = Column(Enum(QualificationLevel), nullable=False, index=True)
    grade = Column(String(1), nullable=False)
    breakdown = Column(JSONType, nullable=False, default=dict)
    recommendations = Column(JSONType, nullable=False, default=list)
    next_actions = Column(JSONType, nullable=False, default=list)
    incremental_update = Column(Boolean, nullable=False, default=False)
    update_reason = Column(Text, nullable=True)
    calculated_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
