"""Pydantic schemas for campaign dispatch."""

from uuid import UUID
from pydantic import BaseModel, Field
from typing import Optional


class CampaignSendRequest(BaseModel):
    batch_size: Optional[int] = Field(default=None, gt=0, le=1000)


class CampaignSendOut(BaseModel):
    campaign_id: UUID
    channel: str
    job_id: UUID
    status: str
