"""Queue monitoring endpoint."""

from fastapi import APIRouter, Depends

from app.core.deps import get_pipeline
from app.services.pipeline import Pipeline

router = APIRouter()


@router.get("/health")
async def queue_health(pipeline: Pipeline = Depends(get_pipeline)):
    """Job counts per queue and status."""
    queues = await pipeline.queue.get_health()
    return {
        "status": "ok" if all(q["is_healthy"] for q in queues.values()) else "degraded",
        "queues": queues,
    }
