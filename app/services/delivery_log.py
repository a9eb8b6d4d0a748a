"""Append-only delivery log writer/reader."""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.delivery_log import EmailLog, SmsLog, DeliveryStatus

logger = logging.getLogger(__name__)

_LOG_MODELS = {"email": EmailLog, "sms": SmsLog}


def _model(channel: str):
    try:
        return _LOG_MODELS[channel]
    except KeyError:
        raise ValueError(f"Unknown delivery channel: {channel}") from None


async def record_email(
    db: AsyncSession,
    recipient: str,
    status: DeliveryStatus,
    subject: Optional[str] = None,
    content: Optional[str] = None,
    campaign_id: Optional[uuid.UUID] = None,
    customer_id: Optional[uuid.UUID] = None,
    message_id: Optional[str] = None,
    error_message: Optional[str] = None,
    skip_reason: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    details: Optional[dict] = None,
) -> EmailLog:
    """Append one email delivery row. Caller commits."""
    row = EmailLog(
        recipient=recipient,
        status=status,
        subject=subject,
        content=content,
        campaign_id=campaign_id,
        customer_id=customer_id,
        message_id=message_id,
        error_message=error_message[:2000] if error_message else None,
        skip_reason=skip_reason,
        dedupe_key=dedupe_key,
        details=details,
    )
    db.add(row)
    await db.flush()
    logger.debug("Email log %s: %s -> %s", row.id, recipient, status.value)
    return row


async def record_sms(
    db: AsyncSession,
    recipient: str,
    status: DeliveryStatus,
    content: Optional[str] = None,
    campaign_id: Optional[uuid.UUID] = None,
    customer_id: Optional[uuid.UUID] = None,
    message_id: Optional[str] = None,
    cost: Optional[float] = None,
    segments: Optional[int] = None,
    error_message: Optional[str] = None,
    skip_reason: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    details: Optional[dict] = None,
) -> SmsLog:
    """Append one SMS delivery row. Caller commits."""
    row = SmsLog(
        recipient=recipient,
        status=status,
        content=content,
        campaign_id=campaign_id,
        customer_id=customer_id,
        message_id=message_id,
        cost=cost,
        segments=segments,
        error_message=error_message[:2000] if error_message else None,
        skip_reason=skip_reason,
        dedupe_key=dedupe_key,
        details=details,
    )
    db.add(row)
    await db.flush()
    logger.debug("SMS log %s: %s -> %s", row.id, recipient, status.value)
    return row


async def find_sent(db: AsyncSession, channel: str, dedupe_key: str):
    """The SENT row for ``dedupe_key``, if a previous attempt already went out."""
    model = _model(channel)
    result = await db.execute(
        select(model)
        .where(model.dedupe_key == dedupe_key, model.status == DeliveryStatus.SENT)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_status(db: AsyncSession, channel: str, message_id: str, status: DeliveryStatus) -> bool:
    model = _model(channel)
    result = await db.execute(
        select(model.id).where(model.message_id == message_id, model.status == status).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def latest_for_message(db: AsyncSession, channel: str, message_id: str):
    """Most recent row for a provider message id (the original send or a later callback)."""
    model = _model(channel)
    result = await db.execute(
        select(model)
        .where(model.message_id == message_id)
        .order_by(model.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
