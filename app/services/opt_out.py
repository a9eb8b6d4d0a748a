"""Recipient consent checks and keyword opt-out handling."""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer
from app.services.sms import format_phone_number

logger = logging.getLogger(__name__)

# English and Albanian keywords
OPT_OUT_KEYWORDS = {"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT", "NDALOJ", "HIQE"}
OPT_IN_KEYWORDS = {"START", "UNSTOP", "SUBSCRIBE", "FILLOJ"}

OPT_OUT_CONFIRMATION = "You have been unsubscribed from {name} SMS messages. Reply START to resubscribe."
OPT_IN_CONFIRMATION = "Welcome back to {name} SMS updates! Reply STOP to unsubscribe."


@dataclass
class KeywordResult:
    action: str  # opted_out, opted_in, none
    customers_updated: int = 0


def _phone_candidates(phone: str) -> set[str]:
    formatted = format_phone_number(phone)
    candidates = {phone, formatted}
    if formatted:
        candidates.add(formatted[1:])
    return {c for c in candidates if c}


async def _customers_by_phone(db: AsyncSession, phone: str) -> list[Customer]:
    result = await db.execute(select(Customer).where(Customer.phone.in_(_phone_candidates(phone))))
    return list(result.scalars().all())


async def is_email_opted_out(db: AsyncSession, email: str) -> bool:
    """True when a customer with this address withdrew marketing consent or hard-bounced."""
    result = await db.execute(
        select(Customer.id).where(
            func.lower(Customer.email) == email.strip().lower(),
            (Customer.marketing_opt_in.is_(False)) | (Customer.email_valid.is_(False)),
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def is_sms_opted_out(db: AsyncSession, phone: str) -> bool:
    """True when a customer with this number has ``sms_opt_in = false``."""
    result = await db.execute(
        select(Customer.id).where(
            Customer.phone.in_(_phone_candidates(phone)),
            Customer.sms_opt_in.is_(False),
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


def match_keyword(body: str) -> str:
    words = set(re.findall(r"[A-Z]+", (body or "").upper()))
    if words & OPT_OUT_KEYWORDS:
        return "opted_out"
    if words & OPT_IN_KEYWORDS:
        return "opted_in"
    return "none"


async def process_inbound_sms(db: AsyncSession, phone: str, body: str) -> KeywordResult:
    """Apply STOP/START keywords from an inbound SMS to the sender's consent flag."""
    action = match_keyword(body)
    if action == "none":
        return KeywordResult(action=action)

    customers = await _customers_by_phone(db, phone)
    for customer in customers:
        customer.sms_opt_in = action == "opted_in"
    await db.commit()

    if action == "opted_out":
        logger.info("SMS opt-out from %s (%d customer record(s))", phone, len(customers))
    else:
        logger.info("SMS opt-in from %s (%d customer record(s))", phone, len(customers))
    return KeywordResult(action=action, customers_updated=len(customers))


async def mark_email_invalid(db: AsyncSession, email: str) -> int:
    """Flag every customer with this address as undeliverable. Returns the count."""
    result = await db.execute(
        select(Customer).where(func.lower(Customer.email) == email.strip().lower())
    )
    customers = result.scalars().all()
    for customer in customers:
        customer.email_valid = False
    if customers:
        logger.warning("Marked email %s invalid after hard bounce", email)
    return len(customers)
