"""Twilio and SendGrid webhook handlers.

Thin HTTP layer: provider callbacks are turned into queue jobs keyed by the
provider message id, so repeated deliveries of the same callback are harmless.
"""

import logging

from fastapi import APIRouter, Request, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator

from app.core.config import settings
from app.core.database import get_db
from app.core.deps import get_pipeline
from app.core.exceptions import InvalidJobPayload
from app.schemas.jobs import JobPriority
from app.services.opt_out import (
    OPT_IN_CONFIRMATION,
    OPT_OUT_CONFIRMATION,
    process_inbound_sms,
)
from app.services.pipeline import Pipeline

router = APIRouter()
logger = logging.getLogger(__name__)

# SendGrid bounce classification: "bounce" is permanent, "blocked" is temporary
SENDGRID_BOUNCE_TYPES = {"bounce": "hard", "blocked": "soft"}
SENDGRID_STATUS_EVENTS = {"delivered", "dropped"}


def _check_twilio_signature(request: Request, form) -> None:
    """Reject unsigned callbacks when a Twilio auth token is configured."""
    if not settings.TWILIO_AUTH_TOKEN:
        return
    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    signature = request.headers.get("X-Twilio-Signature", "")
    if not validator.validate(str(request.url), dict(form), signature):
        logger.warning("Rejected Twilio callback with invalid signature")
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


@router.post("/twilio/status")
async def twilio_status_webhook(request: Request, pipeline: Pipeline = Depends(get_pipeline)):
    """Receive SMS delivery receipts from Twilio."""
    form = await request.form()
    _check_twilio_signature(request, form)

    sid = form.get("MessageSid") or form.get("SmsSid")
    status = form.get("MessageStatus") or form.get("SmsStatus")
    if not sid or not status:
        raise HTTPException(status_code=400, detail="Missing MessageSid or MessageStatus")

    logger.info("Twilio status %s for %s", status, sid)
    await pipeline.queue.add(
        "process_sms_status",
        {
            "messageId": sid,
            "status": status,
            "phoneNumber": form.get("To"),
            "errorCode": form.get("ErrorCode"),
            "errorMessage": form.get("ErrorMessage"),
        },
        priority=JobPriority.LOW.value,
        dedupe_key=f"twilio-status:{sid}:{status}",
    )
    return {"status": "ok"}


@router.post("/twilio/sms")
async def twilio_sms_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Receive inbound SMS; STOP/START keywords update the sender's consent."""
    form = await request.form()
    _check_twilio_signature(request, form)

    from_number = form.get("From", "")
    body = form.get("Body", "")
    if not from_number:
        raise HTTPException(status_code=400, detail="Missing From")

    logger.info("Inbound SMS from %s: %s", from_number, body[:100])
    result = await process_inbound_sms(db, from_number, body)

    if result.action != "none":
        template = OPT_OUT_CONFIRMATION if result.action == "opted_out" else OPT_IN_CONFIRMATION
        await pipeline.queue.add(
            "send_single_sms",
            {"to": from_number, "message": template.format(name=settings.DEALERSHIP_NAME)},
            priority=JobPriority.HIGH.value,
            dedupe_key=f"keyword-reply:{form.get('MessageSid') or from_number}:{result.action}",
        )

    return {"status": "ok", "action": result.action, "customers_updated": result.customers_updated}


def _sendgrid_message_id(event: dict) -> str:
    # sg_message_id is "<X-Message-Id>.filter..."; the send log stores the prefix
    return (event.get("sg_message_id") or "").split(".")[0]


@router.post("/sendgrid")
async def sendgrid_webhook(request: Request, pipeline: Pipeline = Depends(get_pipeline)):
    """Receive SendGrid event webhooks (bounces and delivery receipts)."""
    try:
        events = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if isinstance(events, dict):
        events = [events]
    if not isinstance(events, list):
        raise HTTPException(status_code=400, detail="Expected a list of events")

    queued = 0
    for event in events:
        if not isinstance(event, dict):
            logger.warning("Skipping malformed SendGrid event: %r", event)
            continue
        name = event.get("event")
        message_id = _sendgrid_message_id(event)
        email = event.get("email")
        if not message_id or not email:
            continue

        data = {"messageId": message_id, "email": email, "campaignId": event.get("campaign_id") or None}
        if name in SENDGRID_BOUNCE_TYPES:
            job_type, priority = "process_email_bounce", JobPriority.NORMAL
            data["bounceType"] = SENDGRID_BOUNCE_TYPES[name]
        elif name in SENDGRID_STATUS_EVENTS:
            job_type, priority = "process_email_status", JobPriority.LOW
            data["status"] = name
        else:
            continue

        try:
            await pipeline.queue.add(
                job_type,
                data,
                priority=priority.value,
                dedupe_key=f"sendgrid:{name}:{message_id}",
            )
        except InvalidJobPayload as e:
            logger.warning("Skipping SendGrid %s event for %s: %s", name, message_id, e)
            continue
        queued += 1

    logger.info("SendGrid webhook: %d event(s), %d queued", len(events), queued)
    return {"status": "ok", "queued": queued}
