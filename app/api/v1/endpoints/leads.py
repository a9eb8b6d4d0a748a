"""Lead score and assignment endpoints.

- POST /api/v1/leads/events → Queue a score adjustment for a behavioural event
- GET /api/v1/leads/{customer_id}/score → Latest lead score
- PUT /api/v1/leads/assignments/{id}/status → Move an assignment along its lifecycle
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_pipeline
from app.core.exceptions import InvalidJobPayload, InvalidStatusTransition
from app.schemas.jobs import JobPriority
from app.schemas.lead import AssignmentOut, AssignmentStatusUpdate, LeadEvent, LeadScoreOut
from app.services.pipeline import Pipeline

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/events", status_code=202)
async def record_lead_event(data: LeadEvent, pipeline: Pipeline = Depends(get_pipeline)):
    """Queue an ``update_lead_score`` job for a behavioural event."""
    job = await pipeline.queue.add(
        "update_lead_score",
        data.model_dump(exclude_none=True),
        priority=JobPriority.NORMAL.value,
    )
    return {"status": "queued", "job_id": str(job.id)}


@router.get("/{customer_id}/score", response_model=LeadScoreOut)
async def get_latest_score(
    customer_id: UUID,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    score = await pipeline.scoring.latest_score(db, customer_id=customer_id)
    if not score:
        raise HTTPException(status_code=404, detail="No score for this customer")
    return score


@router.put("/assignments/{assignment_id}/status", response_model=AssignmentOut)
async def update_assignment_status(
    assignment_id: UUID,
    data: AssignmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Record contact, follow-up or closure of an assignment."""
    try:
        assignment = await pipeline.assignments.update_status(db, assignment_id, data.status)
    except InvalidJobPayload:
        raise HTTPException(status_code=404, detail="Assignment not found")
    except InvalidStatusTransition as e:
        await db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    return assignment
