"""Customer, purchase history and touchpoint models."""
import enum
import uuid
from sqlalchemy import Column, String, Boolean, Date, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core.database import Base, utcnow


class TouchpointType(str, enum.Enum):
    """Customer interaction types used for engagement scoring."""
    WEBSITE_VISIT = "website_visit"
    INQUIRY = "inquiry"
    TEST_DRIVE = "test_drive"
    EMAIL_OPENED = "email_opened"
    EMAIL_CLICKED = "email_clicked"
    SMS_REPLY = "sms_reply"
    SHOWROOM_VISIT = "showroom_visit"


class Customer(Base):
    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True, index=True)
    address = Column(String(500), nullable=True)
    birth_date = Column(Date, nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    email_valid = Column(Boolean, nullable=False, default=True)  # false after a hard bounce
    marketing_opt_in = Column(Boolean, nullable=False, default=False)
    sms_opt_in = Column(Boolean, nullable=False, default=False)
    preferred_locale = Column(String(10), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    purchases = relationship("Purchase", back_populates="customer")
    touchpoints = relationship("CustomerTouchpoint", back_populates="customer")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = Column(UUID(as_uuid=True), ForeignKey("vehicles.id"), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    customer = relationship("Customer", back_populates="purchases")


class CustomerTouchpoint(Base):
    __tablename__ = "customer_touchpoints"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    touchpoint_type = Column(Enum(TouchpointType), nullable=False)
    occurred_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    customer = relationship("Customer", back_populates="touchpoints")
