"""SMS queue handlers: single sends, campaign batches and Twilio status callbacks."""

import logging
from dataclasses import asdict

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PermanentDeliveryError, ProviderError
from app.models.campaign import SmsCampaign
from app.models.delivery_log import DeliveryStatus
from app.models.job import Job
from app.schemas.jobs import ProcessSmsStatus, SendSingleSms, SendSmsCampaign
from app.services import delivery_log
from app.services.campaigns import CampaignDispatcher
from app.services.opt_out import is_sms_opted_out
from app.services.personalization import PersonalizationEngine
from app.services.queue_runtime import QueueRuntime
from app.services.sms import SmsService, format_phone_number, is_valid_phone_number

logger = logging.getLogger(__name__)

# Twilio MessageStatus values that end a message's lifecycle
FINAL_SMS_STATUSES = {
    "delivered": DeliveryStatus.DELIVERED,
    "undelivered": DeliveryStatus.UNDELIVERED,
    "failed": DeliveryStatus.FAILED,
}


class SmsWorker:
    def __init__(
        self,
        queue: QueueRuntime,
        transport: SmsService,
        dispatcher: CampaignDispatcher,
        personalization: PersonalizationEngine,
    ):
        self.queue = queue
        self.transport = transport
        self.dispatcher = dispatcher
        self.personalization = personalization
        self.session_factory = queue.session_factory

    def register(self) -> None:
        self.queue.process("send_single_sms", self.handle_send)
        self.queue.process("send_sms_campaign", self.handle_campaign_batch)
        self.queue.process("process_sms_status", self.handle_status)

    async def handle_send(self, job: Job, payload: SendSingleSms) -> dict:
        async with self.session_factory() as db:
            return await self.send(db, payload)

    async def handle_campaign_batch(self, job: Job, payload: SendSmsCampaign) -> dict:
        async with self.session_factory() as db:
            result = await self.dispatcher.process_batch(
                db, "sms", payload.campaign_id, payload.batch_size, payload.start_index
            )
        return asdict(result)

    async def handle_status(self, job: Job, payload: ProcessSmsStatus) -> dict:
        async with self.session_factory() as db:
            return await self.process_status(db, payload)

    async def send(self, db: AsyncSession, payload: SendSingleSms) -> dict:
        """Send one SMS and append its delivery log row. Commits."""
        to = format_phone_number(payload.to)
        message = payload.message
        if payload.personalization_data:
            message = self.personalization.render(message, {"phone": to, **payload.personalization_data})

        log_fields = {
            "content": message,
            "campaign_id": payload.campaign_id,
            "customer_id": payload.customer_id,
            "dedupe_key": payload.dedupe_key,
        }

        if payload.campaign_id and await is_sms_opted_out(db, to or payload.to):
            await delivery_log.record_sms(
                db, to or payload.to, DeliveryStatus.SKIPPED, skip_reason="opted_out", **log_fields
            )
            await db.commit()
            logger.info("Skipping SMS to %s: recipient opted out", to)
            return {"sent": False, "skipped": True, "reason": "opted_out"}

        if payload.dedupe_key:
            previous = await delivery_log.find_sent(db, "sms", payload.dedupe_key)
            if previous is not None:
                logger.info("SMS to %s already sent (SID %s)", to, previous.message_id)
                return {"sent": False, "duplicate": True, "message_id": previous.message_id}

        if not is_valid_phone_number(to):
            await delivery_log.record_sms(
                db,
                payload.to,
                DeliveryStatus.FAILED,
                error_message=f"Invalid phone number: {payload.to}",
                **log_fields,
            )
            await db.commit()
            raise PermanentDeliveryError(f"Invalid phone number: {payload.to}")

        try:
            result = await self.transport.send(to, message, payload.media_urls, payload.sender_name)
        except (ProviderError, PermanentDeliveryError) as e:
            await delivery_log.record_sms(db, to, DeliveryStatus.FAILED, error_message=str(e), **log_fields)
            await db.commit()
            raise

        await delivery_log.record_sms(
            db,
            to,
            DeliveryStatus.SENT,
            message_id=result.message_id,
            cost=result.cost,
            segments=result.segments,
            details={"providerStatus": result.status},
            **log_fields,
        )
        await db.commit()
        return {
            "sent": True,
            "message_id": result.message_id,
            "cost": result.cost,
            "segments": result.segments,
        }

    async def process_status(self, db: AsyncSession, payload: ProcessSmsStatus) -> dict:
        """Append a Twilio status row once per (SID, status) and bump counters. Commits.

        Intermediate statuses (queued, sending, sent) are acknowledged but not logged.
        """
        status = FINAL_SMS_STATUSES.get(payload.status.lower())
        if status is None:
            return {"processed": False, "reason": "intermediate_status", "status": payload.status}

        if await delivery_log.has_status(db, "sms", payload.message_id, status):
            return {"processed": False, "duplicate": True}

        original = await delivery_log.latest_for_message(db, "sms", payload.message_id)
        campaign_id = payload.campaign_id or (original.campaign_id if original else None)
        recipient = payload.phone_number or (original.recipient if original else "unknown")

        details = None
        if payload.error_code or payload.error_message:
            details = {"errorCode": payload.error_code}
        await delivery_log.record_sms(
            db,
            recipient,
            status,
            campaign_id=campaign_id,
            customer_id=original.customer_id if original else None,
            message_id=payload.message_id,
            error_message=payload.error_message,
            details=details,
        )

        if campaign_id:
            column = "delivered" if status == DeliveryStatus.DELIVERED else "failed"
            await db.execute(
                update(SmsCampaign)
                .where(SmsCampaign.id == campaign_id)
                .values({column: getattr(SmsCampaign, column) + 1})
            )
        await db.commit()

        if status != DeliveryStatus.DELIVERED:
            logger.warning(
                "SMS %s to %s %s: %s %s",
                payload.message_id,
                recipient,
                status.value,
                payload.error_code or "",
                payload.error_message or "",
            )
        return {"processed": True, "status": status.value}
