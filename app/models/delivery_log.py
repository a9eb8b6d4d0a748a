"""Append-only delivery log models.

One row per send attempt; provider callbacks append further rows keyed by
the provider message id instead of editing earlier ones.
"""
import enum
import uuid
from sqlalchemy import Column, String, Text, Integer, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base, JSONType, utcnow


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    UNDELIVERED = "undelivered"
    FAILED = "failed"
    SKIPPED = "skipped"


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("email_campaigns.id"), nullable=True, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    recipient = Column(String(255), nullable=False, index=True)
    subject = Column(String(500), nullable=True)
    content = Column(Text, nullable=True)
    status = Column(Enum(DeliveryStatus), nullable=False, index=True)
    message_id = Column(String(255), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    skip_reason = Column(String(100), nullable=True)
    dedupe_key = Column(String(64), nullable=True, index=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class SmsLog(Base):
    __tablename__ = "sms_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("sms_campaigns.id"), nullable=True, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    recipient = Column(String(50), nullable=False, index=True)
    content = Column(Text, nullable=True)
    status = Column(Enum(DeliveryStatus), nullable=False, index=True)
    message_id = Column(String(255), nullable=True, index=True)
    cost = Column(Numeric(10, 4), nullable=True)
    segments = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    skip_reason = Column(String(100), nullable=True)
    dedupe_key = Column(String(64), nullable=True, index=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
