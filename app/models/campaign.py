"""Segment and email/SMS campaign models."""
import uuid
from sqlalchemy import Column, String, Text, Boolean, Integer, DateTime, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import validates
from app.core.database import Base, JSONType, utcnow
from app.models.status import CampaignStatus, CAMPAIGN_TRANSITIONS, check_transition


class Segment(Base):
    """Named customer group used as a campaign recipient source."""
    __tablename__ = "segments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class SegmentMembership(Base):
    __tablename__ = "segment_memberships"
    __table_args__ = (UniqueConstraint("segment_id", "customer_id", name="uq_segment_member"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    segment_id = Column(UUID(as_uuid=True), ForeignKey("segments.id"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class EmailCampaign(Base):
    __tablename__ = "email_campaigns"
    __transitions__ = CAMPAIGN_TRANSITIONS

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    html_content = Column(Text, nullable=True)
    segment_id = Column(UUID(as_uuid=True), ForeignKey("segments.id"), nullable=True)
    custom_audience = Column(JSONType, nullable=True)
    status = Column(Enum(CampaignStatus), nullable=False, default=CampaignStatus.SCHEDULED, index=True)
    scheduled_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    sent = Column(Integer, nullable=False, default=0)
    delivered = Column(Integer, nullable=False, default=0)
    bounced = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("EmailCampaign", CAMPAIGN_TRANSITIONS, self.status, value)


class SmsCampaign(Base):
    __tablename__ = "sms_campaigns"
    __transitions__ = CAMPAIGN_TRANSITIONS

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    media_urls = Column(JSONType, nullable=True)
    sender_name = Column(String(11), nullable=True)
    segment_id = Column(UUID(as_uuid=True), ForeignKey("segments.id"), nullable=True)
    custom_audience = Column(JSONType, nullable=True)
    status = Column(Enum(CampaignStatus), nullable=False, default=CampaignStatus.SCHEDULED, index=True)
    scheduled_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    sent = Column(Integer, nullable=False, default=0)
    delivered = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("SmsCampaign", CAMPAIGN_TRANSITIONS, self.status, value)
