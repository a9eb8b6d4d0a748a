"""Sales representative model."""
import uuid
from sqlalchemy import Column, String, Boolean, Float, Integer, DateTime
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base, JSONType, utcnow


class SalesRepresentative(Base):
    __tablename__ = "sales_representatives"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_available = Column(Boolean, nullable=False, default=True)
    # e.g. ["SUV", "PREMIUM", "ALL_VEHICLES"]
    expertise = Column(JSONType, nullable=False, default=list)
    # e.g. ["en", "sq"] or ["MULTILINGUAL"]
    languages = Column(JSONType, nullable=False, default=list)
    territory = Column(String(100), nullable=True)
    can_handle_urgent = Column(Boolean, nullable=False, default=False)
    conversion_rate = Column(Float, nullable=False, default=0.0)  # percent
    current_active_leads = Column(Integer, nullable=False, default=0)
    max_active_leads = Column(Integer, nullable=False, default=15)
    working_days = Column(JSONType, nullable=False, default=lambda: [0, 1, 2, 3, 4, 5])  # Monday=0
    work_start_hour = Column(Integer, nullable=False, default=8)
    work_end_hour = Column(Integer, nullable=False, default=20)
    last_active_at = Column(DateTime, nullable=True)
    last_assignment_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
