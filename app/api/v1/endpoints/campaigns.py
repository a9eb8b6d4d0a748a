"""Campaign dispatch endpoints.

- POST /api/v1/campaigns/{channel}/{campaign_id}/send → Queue the first batch
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_pipeline
from app.core.exceptions import InvalidJobPayload
from app.schemas.campaign import CampaignSendOut, CampaignSendRequest
from app.services.pipeline import Pipeline

router = APIRouter()
logger = logging.getLogger(__name__)

CHANNELS = ("email", "sms")


@router.post("/{channel}/{campaign_id}/send", response_model=CampaignSendOut, status_code=202)
async def send_campaign(
    channel: str,
    campaign_id: UUID,
    data: CampaignSendRequest | None = None,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Mark a SCHEDULED campaign sendable by queueing its first batch job."""
    if channel not in CHANNELS:
        raise HTTPException(status_code=404, detail=f"Unknown channel: {channel}")

    batch_size = data.batch_size if data else None
    try:
        job = await pipeline.dispatcher.start(db, channel, campaign_id, batch_size)
    except InvalidJobPayload:
        raise HTTPException(status_code=404, detail="Campaign not found")

    if job is None:
        raise HTTPException(status_code=409, detail="Campaign is not in a sendable state")

    return CampaignSendOut(campaign_id=campaign_id, channel=channel, job_id=job.id, status="queued")
