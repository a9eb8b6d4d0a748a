"""Pydantic schemas for inquiries."""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional
from app.models.inquiry import InquiryType
from app.models.status import InquiryStatus


class InquiryCreate(BaseModel):
    """Schema for an inquiry submitted through the public site."""
    name: str = Field(min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    inquiry_type: InquiryType = InquiryType.GENERAL
    message: Optional[str] = None
    vehicle_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _require_contact(self):
        if not (self.email or self.phone):
            raise ValueError("email or phone is required")
        return self


class InquiryOut(BaseModel):
    """Schema for returning inquiry details."""
    id: UUID
    customer_id: Optional[UUID] = None
    vehicle_id: Optional[UUID] = None
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    inquiry_type: InquiryType
    message: Optional[str] = None
    status: InquiryStatus
    created_at: datetime

    class Config:
        from_attributes = True
