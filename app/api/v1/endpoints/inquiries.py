"""Inquiry intake endpoints.

- POST /api/v1/inquiries/ → Record an inquiry and queue its lead score
- GET /api/v1/inquiries/{id} → Inquiry details
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_pipeline
from app.models.customer import Customer, CustomerTouchpoint, TouchpointType
from app.models.inquiry import Inquiry
from app.models.vehicle import Vehicle
from app.schemas.inquiry import InquiryCreate, InquiryOut
from app.schemas.jobs import JobPriority
from app.services.pipeline import Pipeline

router = APIRouter()
logger = logging.getLogger(__name__)


async def _match_customer(db: AsyncSession, data: InquiryCreate) -> Customer | None:
    if data.email:
        query = select(Customer).where(func.lower(Customer.email) == data.email.lower())
    else:
        query = select(Customer).where(Customer.phone == data.phone)
    result = await db.execute(query.order_by(Customer.created_at).limit(1))
    return result.scalar_one_or_none()


@router.post("/", response_model=InquiryOut, status_code=201)
async def create_inquiry(
    data: InquiryCreate,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Record an inbound inquiry and queue lead scoring for it."""
    if data.vehicle_id:
        vehicle = await db.get(Vehicle, data.vehicle_id)
        if not vehicle:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        await db.execute(
            update(Vehicle)
            .where(Vehicle.id == data.vehicle_id)
            .values(inquiry_count=Vehicle.inquiry_count + 1)
        )

    customer = await _match_customer(db, data)
    inquiry = Inquiry(
        customer_id=customer.id if customer else None,
        vehicle_id=data.vehicle_id,
        name=data.name,
        email=data.email,
        phone=data.phone,
        inquiry_type=data.inquiry_type,
        message=data.message,
    )
    db.add(inquiry)
    if customer:
        db.add(CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.INQUIRY))
    await db.flush()

    await pipeline.queue.add(
        "calculate_lead_score",
        {"inquiryId": inquiry.id, "reason": "New inquiry"},
        priority=JobPriority.HIGH.value,
        db=db,
    )
    await db.commit()
    await db.refresh(inquiry)

    logger.info("Inquiry %s recorded (%s)", inquiry.id, inquiry.inquiry_type.value)
    return inquiry


@router.get("/{inquiry_id}", response_model=InquiryOut)
async def get_inquiry(inquiry_id: UUID, db: AsyncSession = Depends(get_db)):
    inquiry = await db.get(Inquiry, inquiry_id)
    if not inquiry:
        raise HTTPException(status_code=404, detail="Inquiry not found")
    return inquiry
