"""Pydantic schemas for lead scores, events and assignments."""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, model_validator
from typing import Any, Optional
from app.models.lead_score import QualificationLevel
from app.models.status import AssignmentStatus


class LeadEvent(BaseModel):
    """A behavioural event that nudges a customer's score."""
    customer_id: Optional[UUID] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    action: str
    points: float
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_customer_ref(self):
        if not (self.customer_id or self.email or self.phone):
            raise ValueError("customer_id, email or phone is required")
        return self


class LeadScoreOut(BaseModel):
    """Schema for returning the latest lead score."""
    id: UUID
    customer_id: Optional[UUID] = None
    inquiry_id: Optional[UUID] = None
    total_score: float
    max_possible_score: float
    score_percentage: float
    qualification_level: QualificationLevel
    grade: str
    breakdown: Optional[dict[str, float]] = None
    recommendations: Optional[list[str]] = None
    next_actions: Optional[list[str]] = None
    incremental_update: bool
    calculated_at: datetime

    class Config:
        from_attributes = True


class AssignmentStatusUpdate(BaseModel):
    """Schema for moving an assignment along its lifecycle."""
    status: AssignmentStatus


class AssignmentOut(BaseModel):
    id: UUID
    customer_id: Optional[UUID] = None
    inquiry_id: Optional[UUID] = None
    sales_rep_id: UUID
    status: AssignmentStatus
    confidence: float
    assignment_reason: Optional[str] = None
    assigned_at: datetime
    due_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
