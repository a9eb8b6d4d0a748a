"""Pydantic schemas for queue job payloads.

Payloads are stored in camelCase (``campaignId``, ``startIndex`` ...) so
they stay compatible with producers outside this service; Python code uses
the snake_case attribute names.
"""

import enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from app.models.lead_assignment import Urgency, FollowUpType


class JobPriority(int, enum.Enum):
    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4
    BACKGROUND = 5


class BounceType(str, enum.Enum):
    HARD = "hard"
    SOFT = "soft"


class JobPayload(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SendSingleEmail(JobPayload):
    to: str
    subject: str
    content: str
    html_content: Optional[str] = None
    customer_id: Optional[UUID] = None
    campaign_id: Optional[UUID] = None
    personalization_data: Optional[dict[str, Any]] = None
    priority: int = JobPriority.NORMAL.value
    dedupe_key: Optional[str] = None


class SendEmailCampaign(JobPayload):
    campaign_id: UUID
    batch_size: Optional[int] = Field(default=None, gt=0)
    start_index: int = Field(default=0, ge=0)


class ProcessEmailBounce(JobPayload):
    message_id: str
    email: str
    campaign_id: Optional[UUID] = None
    bounce_type: BounceType = BounceType.HARD


class ProcessEmailStatus(JobPayload):
    message_id: str
    email: str
    campaign_id: Optional[UUID] = None
    status: str  # delivered, failed


class SendSingleSms(JobPayload):
    to: str
    message: str
    media_urls: Optional[list[str]] = None
    customer_id: Optional[UUID] = None
    campaign_id: Optional[UUID] = None
    personalization_data: Optional[dict[str, Any]] = None
    sender_name: Optional[str] = None
    dedupe_key: Optional[str] = None


class SendSmsCampaign(JobPayload):
    campaign_id: UUID
    batch_size: Optional[int] = Field(default=None, gt=0)
    start_index: int = Field(default=0, ge=0)


class ProcessSmsStatus(JobPayload):
    message_id: str
    status: str  # Twilio MessageStatus: queued, sent, delivered, undelivered, failed
    phone_number: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    campaign_id: Optional[UUID] = None


class CalculateLeadScore(JobPayload):
    customer_id: Optional[UUID] = None
    inquiry_id: Optional[UUID] = None
    batch_customer_ids: Optional[list[UUID]] = None
    force_recalculation: bool = False
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _require_target(self):
        if not (self.customer_id or self.inquiry_id or self.batch_customer_ids):
            raise ValueError("customerId, inquiryId or batchCustomerIds is required")
        return self


class PriceRange(JobPayload):
    min: float = 0
    max: float = 0


class AssignLead(JobPayload):
    customer_id: Optional[UUID] = None
    inquiry_id: Optional[UUID] = None
    lead_score: float
    vehicle_type: Optional[str] = None
    price_range: Optional[PriceRange] = None
    location: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    source: Optional[str] = None
    language: Optional[str] = None

    @model_validator(mode="after")
    def _require_lead(self):
        if not (self.customer_id or self.inquiry_id):
            raise ValueError("customerId or inquiryId is required")
        return self


class UpdateLeadScore(JobPayload):
    email: Optional[str] = None
    phone: Optional[str] = None
    customer_id: Optional[UUID] = None
    action: str
    points: float
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_customer_ref(self):
        if not (self.customer_id or self.email or self.phone):
            raise ValueError("customerId, email or phone is required")
        return self


class FollowUpReminder(JobPayload):
    assignment_id: UUID
    type: FollowUpType = FollowUpType.INITIAL_CONTACT


JOB_SCHEMAS: dict[str, type[JobPayload]] = {
    "send_single_email": SendSingleEmail,
    "send_email_campaign": SendEmailCampaign,
    "process_email_bounce": ProcessEmailBounce,
    "process_email_status": ProcessEmailStatus,
    "send_single_sms": SendSingleSms,
    "send_sms_campaign": SendSmsCampaign,
    "process_sms_status": ProcessSmsStatus,
    "calculate_lead_score": CalculateLeadScore,
    "assign_lead": AssignLead,
    "update_lead_score": UpdateLeadScore,
    "follow_up_reminder": FollowUpReminder,
}

JOB_QUEUES: dict[str, str] = {
    "send_single_email": "email",
    "send_email_campaign": "email",
    "process_email_bounce": "email",
    "process_email_status": "email",
    "send_single_sms": "sms",
    "send_sms_campaign": "sms",
    "process_sms_status": "sms",
    "calculate_lead_score": "lead",
    "assign_lead": "lead",
    "update_lead_score": "lead",
    "follow_up_reminder": "lead",
}
