"""Internal notifications for sales representatives and lead acknowledgments.

Every notification is queued as a ``send_single_email`` job instead of being
sent inline, so a provider outage only delays the message.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer
from app.models.inquiry import Inquiry
from app.models.lead_assignment import LeadAssignment, FollowUpType
from app.models.sales_rep import SalesRepresentative
from app.schemas.jobs import JobPriority
from app.services.personalization import DealershipIdentity
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)


@dataclass
class LeadContact:
    """Who the lead is, resolved from the customer record or the inquiry."""
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    customer_id: Optional[uuid.UUID] = None
    inquiry_id: Optional[uuid.UUID] = None
    message: Optional[str] = None
    inquiry_type: Optional[str] = None


async def resolve_lead_contact(
    db: AsyncSession,
    customer_id: uuid.UUID | None,
    inquiry_id: uuid.UUID | None,
) -> LeadContact:
    customer = await db.get(Customer, customer_id) if customer_id else None
    inquiry = await db.get(Inquiry, inquiry_id) if inquiry_id else None

    name = customer.full_name if customer else (inquiry.name if inquiry else "Unknown lead")
    return LeadContact(
        name=name,
        email=(customer.email if customer else None) or (inquiry.email if inquiry else None),
        phone=(customer.phone if customer else None) or (inquiry.phone if inquiry else None),
        customer_id=customer_id,
        inquiry_id=inquiry_id,
        message=inquiry.message if inquiry else None,
        inquiry_type=inquiry.inquiry_type.value if inquiry and inquiry.inquiry_type else None,
    )


def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M UTC") if moment else "as soon as possible"


class NotificationService:
    def __init__(self, queue: QueueRuntime, identity: DealershipIdentity | None = None):
        self.queue = queue
        self.identity = identity or DealershipIdentity.from_settings()

    async def _queue_email(
        self,
        db: AsyncSession,
        to: str,
        subject: str,
        content: str,
        html_content: str,
        priority: int,
        dedupe_key: str,
        customer_id: uuid.UUID | None = None,
    ):
        return await self.queue.add(
            "send_single_email",
            {
                "to": to,
                "subject": subject,
                "content": content,
                "htmlContent": html_content,
                "customerId": customer_id,
                "priority": priority,
            },
            priority=priority,
            dedupe_key=dedupe_key,
            db=db,
        )

    async def notify_rep_of_assignment(
        self,
        db: AsyncSession,
        assignment: LeadAssignment,
        rep: SalesRepresentative,
        lead: LeadContact,
    ):
        """Tell the representative about a new lead."""
        subject = f"New {assignment.urgency.value.upper()} lead: {lead.name}"
        message_text = f"Message: {lead.message[:300]}\n" if lead.message else ""
        content = (
            f"Hi {rep.first_name},\n\n"
            f"A new lead has been assigned to you.\n\n"
            f"Name: {lead.name}\n"
            f"Email: {lead.email or '-'}\n"
            f"Phone: {lead.phone or '-'}\n"
            f"{message_text}"
            f"Priority: {assignment.priority.value}\n"
            f"Reason: {assignment.assignment_reason}\n"
            f"Contact due by: {_fmt(assignment.due_at)}\n"
        )
        message_html = f"<p><strong>Message:</strong> {lead.message[:300]}</p>" if lead.message else ""
        html = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #4A90E2;">New Lead Assigned</h2>
                    <p>Hi {rep.first_name}, a new lead has been assigned to you:</p>
                    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <p><strong>Name:</strong> {lead.name}</p>
                        <p><strong>Email:</strong> {lead.email or '-'}</p>
                        <p><strong>Phone:</strong> {lead.phone or '-'}</p>
                        {message_html}
                        <p><strong>Priority:</strong> {assignment.priority.value}</p>
                        <p><strong>Contact due by:</strong> {_fmt(assignment.due_at)}</p>
                    </div>
                    <p style="color: #666; font-size: 14px;">{assignment.assignment_reason}</p>
                </div>
            </body>
        </html>
        """
        await self._queue_email(
            db,
            to=rep.email,
            subject=subject,
            content=content,
            html_content=html,
            priority=JobPriority.HIGH.value,
            dedupe_key=f"assignment-notice:{assignment.id}",
        )
        logger.info("Queued assignment notice for rep %s (assignment %s)", rep.id, assignment.id)

    async def acknowledge_customer(
        self,
        db: AsyncSession,
        assignment: LeadAssignment,
        rep: SalesRepresentative,
        lead: LeadContact,
    ) -> bool:
        """Confirm to the customer that a named representative will be in touch."""
        if not lead.email:
            logger.info("No email for lead %s; skipping acknowledgment", lead.name)
            return False

        dealership = self.identity.name
        subject = f"Thank you for contacting {dealership}"
        phone_line = f" or call us at {self.identity.phone}" if self.identity.phone else ""
        content = (
            f"Hi {lead.name},\n\n"
            f"Thanks for your interest in {dealership}. {rep.full_name} will contact you shortly.\n"
            f"You can reach {rep.first_name} at {rep.email}{phone_line}.\n\n"
            f"The {dealership} Team"
        )
        html = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #4A90E2;">Thank you, {lead.name}!</h2>
                    <p>Thanks for your interest in {dealership}. <strong>{rep.full_name}</strong> will contact you shortly.</p>
                    <p>You can reach {rep.first_name} at {rep.email}{phone_line}.</p>
                    <p style="color: #666; font-size: 14px; margin-top: 40px;">
                        Best regards,<br>
                        The {dealership} Team
                    </p>
                </div>
            </body>
        </html>
        """
        await self._queue_email(
            db,
            to=lead.email,
            subject=subject,
            content=content,
            html_content=html,
            priority=JobPriority.NORMAL.value,
            dedupe_key=f"assignment-ack:{assignment.id}",
            customer_id=lead.customer_id,
        )
        return True

    async def remind_rep(
        self,
        db: AsyncSession,
        assignment: LeadAssignment,
        rep: SalesRepresentative,
        lead: LeadContact,
        reminder_type: FollowUpType,
        task_id: uuid.UUID,
    ):
        if reminder_type == FollowUpType.INITIAL_CONTACT:
            subject = f"Reminder: contact {lead.name}"
            intro = "This lead has not been contacted yet."
        else:
            subject = f"Follow up with {lead.name}"
            intro = "Time to follow up on this lead."
        content = (
            f"Hi {rep.first_name},\n\n{intro}\n\n"
            f"Name: {lead.name}\nEmail: {lead.email or '-'}\nPhone: {lead.phone or '-'}\n"
            f"Assigned: {_fmt(assignment.assigned_at)}\n"
        )
        html = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #E2A04A;">{subject}</h2>
                    <p>{intro}</p>
                    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <p><strong>Name:</strong> {lead.name}</p>
                        <p><strong>Email:</strong> {lead.email or '-'}</p>
                        <p><strong>Phone:</strong> {lead.phone or '-'}</p>
                    </div>
                </div>
            </body>
        </html>
        """
        await self._queue_email(
            db,
            to=rep.email,
            subject=subject,
            content=content,
            html_content=html,
            priority=JobPriority.HIGH.value,
            dedupe_key=f"follow-up-reminder:{task_id}",
        )
