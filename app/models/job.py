"""Durable job queue model."""
import enum
import uuid
from sqlalchemy import Column, String, Integer, Text, DateTime, Enum
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base, JSONType, utcnow


class JobStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    queue = Column(String(50), nullable=False, index=True)  # email, sms, lead
    job_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSONType, nullable=False)
    priority = Column(Integer, nullable=False, default=3)  # 1 runs first
    run_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    backoff_type = Column(String(20), nullable=False, default="exponential")  # exponential, fixed
    backoff_delay_ms = Column(Integer, nullable=False, default=1000)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.WAITING, index=True)
    dedupe_key = Column(String(128), nullable=True, unique=True)
    last_error = Column(Text, nullable=True)
    result = Column(JSONType, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
