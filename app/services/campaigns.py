"""Batched email/SMS campaign fan-out.

A campaign is expanded one batch at a time: each batch job personalises and
queues one send job per recipient in ``[start_index, end_index)`` with a
small random delay, bumps the campaign's ``sent`` counter, and queues the
next batch job after a fixed pause. Batch jobs run with concurrency 1 and a
single attempt; an orchestration error marks the campaign FAILED.
"""

import hashlib
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import utcnow
from app.core.exceptions import InvalidJobPayload
from app.models.campaign import EmailCampaign, SmsCampaign, SegmentMembership
from app.models.customer import Customer
from app.models.job import Job
from app.models.status import CampaignStatus, transition
from app.schemas.jobs import JobPriority
from app.services.personalization import PersonalizationEngine, recipient_data
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = (CampaignStatus.SCHEDULED, CampaignStatus.SENDING)


@dataclass(frozen=True)
class ChannelConfig:
    channel: str
    model: type
    send_job: str
    batch_job: str
    batch_size: int
    jitter: tuple[float, float]  # seconds, per message
    batch_delay: float  # seconds between batches


def default_channels() -> dict[str, ChannelConfig]:
    return {
        "email": ChannelConfig(
            channel="email",
            model=EmailCampaign,
            send_job="send_single_email",
            batch_job="send_email_campaign",
            batch_size=settings.EMAIL_BATCH_SIZE,
            jitter=(0.0, 5.0),
            batch_delay=settings.EMAIL_BATCH_DELAY_SECONDS,
        ),
        "sms": ChannelConfig(
            channel="sms",
            model=SmsCampaign,
            send_job="send_single_sms",
            batch_job="send_sms_campaign",
            batch_size=settings.SMS_BATCH_SIZE,
            jitter=(1.0, 3.0),
            batch_delay=settings.SMS_BATCH_DELAY_SECONDS,
        ),
    }


def dedupe_key(channel: str, campaign_id: uuid.UUID, recipient: str) -> str:
    """Idempotency key for one campaign send to one recipient."""
    return hashlib.sha256(f"{channel}:{campaign_id}:{recipient.lower()}".encode()).hexdigest()


@dataclass
class BatchResult:
    outcome: str  # not_sendable, completed, batch_queued
    campaign_id: uuid.UUID
    channel: str
    status: str
    total: int = 0
    start_index: int = 0
    end_index: int = 0
    queued: int = 0
    next_start_index: Optional[int] = None


class CampaignDispatcher:
    def __init__(
        self,
        queue: QueueRuntime,
        personalization: PersonalizationEngine,
        rng: random.Random | None = None,
        channels: dict[str, ChannelConfig] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.personalization = personalization
        self.rng = rng or random.Random()
        self.channels = channels or default_channels()
        self.clock = clock

    def _config(self, channel: str) -> ChannelConfig:
        try:
            return self.channels[channel]
        except KeyError:
            raise InvalidJobPayload(f"Unknown campaign channel: {channel}") from None

    async def start(
        self,
        db: AsyncSession,
        channel: str,
        campaign_id: uuid.UUID,
        batch_size: int | None = None,
    ) -> Optional[Job]:
        """Queue the first batch of a SCHEDULED campaign. Returns None when not sendable."""
        config = self._config(channel)
        campaign = await db.get(config.model, campaign_id)
        if campaign is None:
            raise InvalidJobPayload(f"{channel} campaign {campaign_id} not found")
        if campaign.status != CampaignStatus.SCHEDULED:
            logger.warning("Campaign %s is %s; not starting", campaign_id, campaign.status.value)
            return None

        job = await self._queue_batch(db, config, campaign_id, batch_size or config.batch_size, 0, delay=0)
        await db.commit()
        logger.info("Queued %s campaign %s", channel, campaign_id)
        return job

    async def start_due(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Start every SCHEDULED campaign whose ``scheduled_at`` has passed."""
        now = now or self.clock()
        started = 0
        for config in self.channels.values():
            result = await db.execute(
                select(config.model.id).where(
                    config.model.status == CampaignStatus.SCHEDULED,
                    config.model.scheduled_at.is_not(None),
                    config.model.scheduled_at <= now,
                )
            )
            for campaign_id in result.scalars().all():
                if await self.start(db, config.channel, campaign_id):
                    started += 1
        return started

    async def _queue_batch(
        self,
        db: AsyncSession,
        config: ChannelConfig,
        campaign_id: uuid.UUID,
        batch_size: int,
        start_index: int,
        delay: float,
    ) -> Job:
        return await self.queue.add(
            config.batch_job,
            {"campaignId": campaign_id, "batchSize": batch_size, "startIndex": start_index},
            priority=JobPriority.HIGH.value,
            delay=delay,
            attempts=1,
            dedupe_key=f"{config.channel}-batch:{campaign_id}:{start_index}",
            db=db,
        )

    async def resolve_recipients(self, db: AsyncSession, channel: str, campaign) -> list[Customer]:
        """Recipients in a stable order.

        Segment members when ``segment_id`` is set; an empty list for custom
        audiences (not supported yet); otherwise every active, opted-in customer.
        """
        if channel == "email":
            contactable = (
                Customer.email.is_not(None),
                Customer.email != "",
                Customer.email_valid.is_(True),
                Customer.marketing_opt_in.is_(True),
            )
        else:
            contactable = (
                Customer.phone.is_not(None),
                Customer.phone != "",
                Customer.sms_opt_in.is_(True),
            )

        query = select(Customer).where(Customer.is_active.is_(True), *contactable)
        if campaign.segment_id:
            query = query.join(SegmentMembership, SegmentMembership.customer_id == Customer.id).where(
                SegmentMembership.segment_id == campaign.segment_id,
                SegmentMembership.is_active.is_(True),
            )
        elif campaign.custom_audience:
            logger.warning(
                "Campaign %s uses a custom audience, which is not supported; no recipients resolved",
                campaign.id,
            )
            return []

        result = await db.execute(query.order_by(Customer.created_at, Customer.id))
        return list(result.scalars().unique().all())

    async def process_batch(
        self,
        db: AsyncSession,
        channel: str,
        campaign_id: uuid.UUID,
        batch_size: int | None = None,
        start_index: int = 0,
    ) -> BatchResult:
        """Expand one batch of a campaign. Commits.

        Raises after marking the campaign FAILED when anything goes wrong.
        """
        config = self._config(channel)
        campaign = await db.get(config.model, campaign_id)
        if campaign is None:
            raise InvalidJobPayload(f"{channel} campaign {campaign_id} not found")
        if campaign.status not in SENDABLE_STATUSES:
            logger.warning("Campaign %s is %s; batch skipped", campaign_id, campaign.status.value)
            return BatchResult(
                outcome="not_sendable",
                campaign_id=campaign_id,
                channel=channel,
                status=campaign.status.value,
                start_index=start_index,
            )

        batch_size = batch_size or config.batch_size
        try:
            result = await self._expand(db, config, campaign, batch_size, start_index)
            await db.commit()
        except Exception as e:
            await db.rollback()
            await self._mark_failed(db, config, campaign_id, e)
            raise

        logger.info(
            "Campaign %s batch [%d, %d) of %d: %d queued (%s)",
            campaign_id,
            result.start_index,
            result.end_index,
            result.total,
            result.queued,
            result.outcome,
        )
        return result

    async def _expand(
        self,
        db: AsyncSession,
        config: ChannelConfig,
        campaign,
        batch_size: int,
        start_index: int,
    ) -> BatchResult:
        model = config.model
        now = self.clock()
        recipients = await self.resolve_recipients(db, config.channel, campaign)
        total = len(recipients)

        if total == 0:
            await transition(db, model, campaign.id, CampaignStatus.SENT, completed_at=now)
            return BatchResult(
                outcome="completed",
                campaign_id=campaign.id,
                channel=config.channel,
                status=CampaignStatus.SENT.value,
            )

        if campaign.status == CampaignStatus.SCHEDULED:
            await transition(db, model, campaign.id, CampaignStatus.SENDING, started_at=now)

        end_index = min(start_index + batch_size, total)
        queued = 0
        # Each send job commits with its counter bump so a later failure keeps it
        for customer in recipients[start_index:end_index]:
            if await self._queue_send(db, config, campaign, customer):
                await db.execute(
                    update(model).where(model.id == campaign.id).values(sent=model.sent + 1)
                )
                queued += 1
            await db.commit()

        if end_index < total:
            await self._queue_batch(db, config, campaign.id, batch_size, end_index, delay=config.batch_delay)
            return BatchResult(
                outcome="batch_queued",
                campaign_id=campaign.id,
                channel=config.channel,
                status=CampaignStatus.SENDING.value,
                total=total,
                start_index=start_index,
                end_index=end_index,
                queued=queued,
                next_start_index=end_index,
            )

        await transition(db, model, campaign.id, CampaignStatus.SENT, completed_at=now)
        return BatchResult(
            outcome="completed",
            campaign_id=campaign.id,
            channel=config.channel,
            status=CampaignStatus.SENT.value,
            total=total,
            start_index=start_index,
            end_index=end_index,
            queued=queued,
        )

    async def _queue_send(self, db: AsyncSession, config: ChannelConfig, campaign, customer: Customer) -> bool:
        """Queue one personalised send. Returns False when the send was already queued."""
        data = recipient_data(customer)
        render = self.personalization.render

        if config.channel == "email":
            recipient = customer.email
            payload = {
                "to": recipient,
                "subject": render(campaign.subject, data),
                "content": render(campaign.content, data),
                "htmlContent": render(campaign.html_content, data) or None,
                "customerId": customer.id,
                "campaignId": campaign.id,
                "priority": JobPriority.NORMAL.value,
            }
        else:
            recipient = customer.phone
            payload = {
                "to": recipient,
                "message": render(campaign.message, data),
                "mediaUrls": campaign.media_urls or None,
                "customerId": customer.id,
                "campaignId": campaign.id,
                "senderName": campaign.sender_name,
            }

        key = dedupe_key(config.channel, campaign.id, recipient)
        if await self.queue.find(db, key) is not None:
            logger.debug("Campaign %s already queued for %s", campaign.id, recipient)
            return False

        payload["dedupeKey"] = key
        await self.queue.add(
            config.send_job,
            payload,
            priority=JobPriority.NORMAL.value,
            delay=self.rng.uniform(*config.jitter),
            dedupe_key=key,
            db=db,
        )
        return True

    async def _mark_failed(self, db: AsyncSession, config: ChannelConfig, campaign_id: uuid.UUID, error: Exception):
        try:
            await transition(
                db,
                config.model,
                campaign_id,
                CampaignStatus.FAILED,
                completed_at=self.clock(),
                last_error=str(error)[:2000],
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("Could not mark campaign %s FAILED: %s", campaign_id, e)
        logger.error("Campaign %s failed during batch processing: %s", campaign_id, error)
