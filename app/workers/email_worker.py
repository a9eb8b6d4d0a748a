"""Email queue handlers: single sends, campaign batches and SendGrid callbacks."""

import logging
from dataclasses import asdict

from email_validator import validate_email, EmailNotValidError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidJobPayload, PermanentDeliveryError, ProviderError
from app.models.campaign import EmailCampaign
from app.models.delivery_log import DeliveryStatus
from app.models.job import Job
from app.schemas.jobs import (
    BounceType,
    ProcessEmailBounce,
    ProcessEmailStatus,
    SendEmailCampaign,
    SendSingleEmail,
)
from app.services import delivery_log
from app.services.campaigns import CampaignDispatcher
from app.services.email_service import EmailService
from app.services.opt_out import is_email_opted_out, mark_email_invalid
from app.services.personalization import PersonalizationEngine
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)

# SendGrid event name -> log status
EMAIL_STATUSES = {
    "delivered": DeliveryStatus.DELIVERED,
    "failed": DeliveryStatus.FAILED,
    "dropped": DeliveryStatus.FAILED,
}


class EmailWorker:
    def __init__(
        self,
        queue: QueueRuntime,
        transport: EmailService,
        dispatcher: CampaignDispatcher,
        personalization: PersonalizationEngine,
    ):
        self.queue = queue
        self.transport = transport
        self.dispatcher = dispatcher
        self.personalization = personalization
        self.session_factory = queue.session_factory

    def register(self) -> None:
        self.queue.process("send_single_email", self.handle_send)
        self.queue.process("send_email_campaign", self.handle_campaign_batch)
        self.queue.process("process_email_bounce", self.handle_bounce)
        self.queue.process("process_email_status", self.handle_status)

    async def handle_send(self, job: Job, payload: SendSingleEmail) -> dict:
        async with self.session_factory() as db:
            return await self.send(db, payload)

    async def handle_campaign_batch(self, job: Job, payload: SendEmailCampaign) -> dict:
        async with self.session_factory() as db:
            result = await self.dispatcher.process_batch(
                db, "email", payload.campaign_id, payload.batch_size, payload.start_index
            )
        return asdict(result)

    async def handle_bounce(self, job: Job, payload: ProcessEmailBounce) -> dict:
        async with self.session_factory() as db:
            return await self.process_bounce(db, payload)

    async def handle_status(self, job: Job, payload: ProcessEmailStatus) -> dict:
        async with self.session_factory() as db:
            return await self.process_status(db, payload)

    async def send(self, db: AsyncSession, payload: SendSingleEmail) -> dict:
        """Send one email and append its delivery log row. Commits.

        Opted-out campaign recipients are logged as SKIPPED without a
        provider call. Provider errors are logged as FAILED and re-raised so
        the queue retries the job.
        """
        to = payload.to.strip()
        subject = payload.subject
        content = payload.content
        html_content = payload.html_content
        if payload.personalization_data:
            data = {"email": to, **payload.personalization_data}
            subject = self.personalization.render(subject, data)
            content = self.personalization.render(content, data)
            html_content = self.personalization.render(html_content, data) or None

        log_fields = {
            "subject": subject,
            "content": content,
            "campaign_id": payload.campaign_id,
            "customer_id": payload.customer_id,
            "dedupe_key": payload.dedupe_key,
        }

        if payload.campaign_id and await is_email_opted_out(db, to):
            await delivery_log.record_email(
                db, to, DeliveryStatus.SKIPPED, skip_reason="opted_out", **log_fields
            )
            await db.commit()
            logger.info("Skipping email to %s: recipient opted out", to)
            return {"sent": False, "skipped": True, "reason": "opted_out"}

        if payload.dedupe_key:
            previous = await delivery_log.find_sent(db, "email", payload.dedupe_key)
            if previous is not None:
                logger.info("Email to %s already sent (message id %s)", to, previous.message_id)
                return {"sent": False, "duplicate": True, "message_id": previous.message_id}

        try:
            validate_email(to, check_deliverability=False)
        except EmailNotValidError as e:
            await delivery_log.record_email(
                db, to, DeliveryStatus.FAILED, error_message=f"Invalid email address: {e}", **log_fields
            )
            await db.commit()
            raise PermanentDeliveryError(f"Invalid email address {to}: {e}") from e

        try:
            message_id = await self.transport.send(to, subject, content, html_content)
        except ProviderError as e:
            await delivery_log.record_email(
                db, to, DeliveryStatus.FAILED, error_message=str(e), **log_fields
            )
            await db.commit()
            raise

        await delivery_log.record_email(
            db, to, DeliveryStatus.SENT, message_id=message_id, **log_fields
        )
        await db.commit()
        return {"sent": True, "message_id": message_id}

    async def process_bounce(self, db: AsyncSession, payload: ProcessEmailBounce) -> dict:
        """Record a bounce once per provider message id. Commits."""
        if await delivery_log.has_status(db, "email", payload.message_id, DeliveryStatus.BOUNCED):
            logger.info("Bounce for message %s already processed", payload.message_id)
            return {"processed": False, "duplicate": True}

        original = await delivery_log.latest_for_message(db, "email", payload.message_id)
        campaign_id = payload.campaign_id or (original.campaign_id if original else None)

        await delivery_log.record_email(
            db,
            payload.email,
            DeliveryStatus.BOUNCED,
            campaign_id=campaign_id,
            customer_id=original.customer_id if original else None,
            message_id=payload.message_id,
            details={"bounceType": payload.bounce_type.value},
        )
        if campaign_id:
            await db.execute(
                update(EmailCampaign)
                .where(EmailCampaign.id == campaign_id)
                .values(bounced=EmailCampaign.bounced + 1)
            )

        invalidated = 0
        if payload.bounce_type == BounceType.HARD:
            invalidated = await mark_email_invalid(db, payload.email)

        await db.commit()
        logger.info("Processed %s bounce for %s", payload.bounce_type.value, payload.email)
        return {"processed": True, "customers_invalidated": invalidated}

    async def process_status(self, db: AsyncSession, payload: ProcessEmailStatus) -> dict:
        """Append a delivery receipt once per (message id, status). Commits."""
        status = EMAIL_STATUSES.get(payload.status.lower())
        if status is None:
            raise InvalidJobPayload(f"Unsupported email status: {payload.status}")

        if await delivery_log.has_status(db, "email", payload.message_id, status):
            return {"processed": False, "duplicate": True}

        original = await delivery_log.latest_for_message(db, "email", payload.message_id)
        campaign_id = payload.campaign_id or (original.campaign_id if original else None)

        await delivery_log.record_email(
            db,
            payload.email,
            status,
            campaign_id=campaign_id,
            customer_id=original.customer_id if original else None,
            message_id=payload.message_id,
        )
        if campaign_id and status == DeliveryStatus.DELIVERED:
            await db.execute(
                update(EmailCampaign)
                .where(EmailCampaign.id == campaign_id)
                .values(delivered=EmailCampaign.delivered + 1)
            )
        await db.commit()
        return {"processed": True, "status": status.value}
