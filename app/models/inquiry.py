"""Inbound customer inquiry model."""
import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates
from app.core.database import Base, utcnow
from app.models.status import InquiryStatus, INQUIRY_TRANSITIONS, check_transition


class InquiryType(str, enum.Enum):
    """Inquiry type enum."""
    PURCHASE_INTENT = "purchase_intent"
    FINANCING = "financing"
    TEST_DRIVE = "test_drive"
    TRADE_IN = "trade_in"
    PRICE_INQUIRY = "price_inquiry"
    GENERAL = "general"
    SERVICE = "service"


class Inquiry(Base):
    """Inquiry submitted through the public site."""
    __tablename__ = "inquiries"
    __transitions__ = INQUIRY_TRANSITIONS

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    vehicle_id = Column(UUID(as_uuid=True), ForeignKey("vehicles.id"), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    inquiry_type = Column(Enum(InquiryType), nullable=False, default=InquiryType.GENERAL)
    message = Column(Text, nullable=True)
    status = Column(Enum(InquiryStatus), nullable=False, default=InquiryStatus.NEW, index=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    customer = relationship("Customer")
    vehicle = relationship("Vehicle")

    @validates("status")
    def _validate_status(self, key, value):
        return check_transition("Inquiry", INQUIRY_TRANSITIONS, self.status, value)
