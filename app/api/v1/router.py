from fastapi import APIRouter
from app.api.v1.endpoints import webhooks, inquiries, leads, campaigns, queue

api_router = APIRouter()
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(inquiries.router, prefix="/inquiries", tags=["inquiries"])
api_router.include_router(leads.router, prefix="/leads", tags=["leads"])
api_router.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
api_router.include_router(queue.router, prefix="/queue", tags=["queue"])
