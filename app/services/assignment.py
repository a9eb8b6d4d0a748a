"""Lead assignment engine.

Matches a scored lead to the best available sales representative. Leads
with no available representative go to the wait queue and the caller gets a
negative result instead of an error. A lead never holds more than one open
(ACTIVE / CONTACTED / FOLLOW_UP) assignment.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, or_, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import utcnow
from app.core.exceptions import InvalidJobPayload, InvalidStatusTransition
from app.models.inquiry import Inquiry
from app.models.lead_assignment import (
    LeadAssignment,
    WaitQueueEntry,
    FollowUpType,
    FollowUpTask,
    AssignmentPriority,
    Urgency,
)
from app.models.sales_rep import SalesRepresentative
from app.models.status import (
    AssignmentStatus,
    InquiryStatus,
    WaitQueueStatus,
    FollowUpStatus,
    OPEN_ASSIGNMENT_STATUSES,
)
from app.schemas.jobs import AssignLead, JobPriority
from app.services.follow_up import FollowUpScheduler, URGENCY_DELAYS
from app.services.notification_service import NotificationService, resolve_lead_contact
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 30
MAX_WAIT_ATTEMPTS = 10

URGENCY_MULTIPLIERS = {
    Urgency.URGENT: 1.5,
    Urgency.HIGH: 1.3,
    Urgency.MEDIUM: 1.1,
    Urgency.LOW: 1.0,
}

WAIT_QUEUE_PRIORITY = {
    Urgency.URGENT: JobPriority.CRITICAL.value,
    Urgency.HIGH: JobPriority.HIGH.value,
    Urgency.MEDIUM: JobPriority.NORMAL.value,
    Urgency.LOW: JobPriority.LOW.value,
}

NO_REPS_ACTIONS = [
    "Add lead to queue for next available representative",
    "Send automated acknowledgment email",
    "Escalate to sales manager if urgent",
    "Schedule callback for next business day",
]

LOW_CONFIDENCE_ACTIONS = [
    "Monitor assignment closely",
    "Consider reassignment if no contact within 2 hours",
    "Provide additional lead context to representative",
    "Set follow-up reminder for 4 hours",
]


def price_category(price: float) -> str:
    if price < 10000:
        return "BUDGET"
    if price < 25000:
        return "MID_RANGE"
    if price < 50000:
        return "PREMIUM"
    return "LUXURY"


def assignment_priority(urgency: Urgency, lead_score: float) -> AssignmentPriority:
    if urgency == Urgency.URGENT or lead_score > 80:
        return AssignmentPriority.HIGH
    if urgency == Urgency.HIGH or lead_score > 60:
        return AssignmentPriority.MEDIUM
    return AssignmentPriority.LOW


def recommended_actions(criteria: AssignLead) -> list[str]:
    actions = []
    if criteria.urgency == Urgency.URGENT:
        actions += ["Contact lead within 15 minutes", "Send immediate SMS acknowledgment"]
    elif criteria.urgency == Urgency.HIGH:
        actions += ["Contact lead within 1 hour", "Send email acknowledgment"]
    else:
        actions += ["Contact lead within 4 hours", "Send welcome email sequence"]
    if criteria.lead_score > 70:
        actions += ["Prepare financing options", "Schedule test drive if applicable"]
    if criteria.vehicle_type:
        actions.append(f"Focus on {criteria.vehicle_type} inventory")
    return actions


@dataclass
class RepScore:
    rep: SalesRepresentative
    score: float
    reason: str


@dataclass
class AssignmentResult:
    outcome: str  # assigned, already_assigned, queued
    confidence: float = 0.0
    reason: str = ""
    assigned_to: Optional[uuid.UUID] = None
    sales_rep_name: Optional[str] = None
    assignment_id: Optional[uuid.UUID] = None
    wait_queue_entry_id: Optional[uuid.UUID] = None
    recommended_actions: list[str] = field(default_factory=list)
    alternatives: list[dict] = field(default_factory=list)
    escalation_required: bool = False

    @property
    def assigned(self) -> bool:
        return self.outcome == "assigned"


class AssignmentEngine:
    def __init__(
        self,
        queue: QueueRuntime,
        follow_ups: FollowUpScheduler,
        notifications: NotificationService,
        clock: Callable[[], datetime] = utcnow,
        business_timezone: str | None = None,
        rotation_strategy: str = "performance_based",
    ):
        self.queue = queue
        self.follow_ups = follow_ups
        self.notifications = notifications
        self.clock = clock
        self.tz = ZoneInfo(business_timezone or settings.BUSINESS_TIMEZONE)
        self.rotation_strategy = rotation_strategy

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    async def find_open_assignment(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID | None,
        inquiry_id: uuid.UUID | None,
    ) -> Optional[LeadAssignment]:
        conditions = []
        if customer_id:
            conditions.append(LeadAssignment.customer_id == customer_id)
        if inquiry_id:
            conditions.append(LeadAssignment.inquiry_id == inquiry_id)
        if not conditions:
            return None
        result = await db.execute(
            select(LeadAssignment)
            .where(or_(*conditions), LeadAssignment.status.in_(OPEN_ASSIGNMENT_STATUSES))
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _is_working(self, rep: SalesRepresentative, now: datetime) -> bool:
        local = now.replace(tzinfo=timezone.utc).astimezone(self.tz)
        days = rep.working_days if rep.working_days is not None else list(range(7))
        return local.weekday() in days and rep.work_start_hour <= local.hour <= rep.work_end_hour

    async def available_reps(self, db: AsyncSession) -> list[SalesRepresentative]:
        """Active, available, on-shift representatives with spare capacity."""
        now = self.clock()
        result = await db.execute(
            select(SalesRepresentative)
            .where(
                SalesRepresentative.is_active.is_(True),
                SalesRepresentative.is_available.is_(True),
                SalesRepresentative.current_active_leads < SalesRepresentative.max_active_leads,
            )
            .order_by(SalesRepresentative.created_at)
        )
        return [rep for rep in result.scalars().all() if self._is_working(rep, now)]

    def score_rep(self, rep: SalesRepresentative, criteria: AssignLead) -> RepScore:
        now = self.clock()
        score = 0.0
        reasons = []

        capacity = rep.max_active_leads or 1
        load = rep.current_active_leads or 0
        score += max(0.0, 100 - load / capacity * 100) * 0.3
        if load < capacity * 0.5:
            reasons.append("Low workload")

        expertise = rep.expertise or []
        if criteria.vehicle_type and (criteria.vehicle_type in expertise or "ALL_VEHICLES" in expertise):
            score += 25
            reasons.append(f"{criteria.vehicle_type} specialist")

        if criteria.price_range and criteria.price_range.max:
            category = price_category(criteria.price_range.max)
            if category in expertise:
                score += 20
                reasons.append(f"{category} specialist")

        languages = rep.languages or []
        if criteria.language and (criteria.language in languages or "MULTILINGUAL" in languages):
            score += 15
            reasons.append(f"Speaks {criteria.language}")

        score += rep.conversion_rate or 0
        if (rep.conversion_rate or 0) > 30:
            reasons.append("High conversion rate")

        if criteria.location and rep.territory and rep.territory.lower() in criteria.location.lower():
            score += 15
            reasons.append("Local territory match")

        score *= URGENCY_MULTIPLIERS[criteria.urgency]
        if criteria.urgency == Urgency.URGENT and rep.can_handle_urgent:
            score += 20
            reasons.append("Handles urgent leads")

        if criteria.lead_score > 70 and (rep.conversion_rate or 0) > 25:
            score += 15
            reasons.append("High-value lead for top performer")

        if rep.last_active_at and (now - rep.last_active_at).total_seconds() < 3600:
            score += 10
            reasons.append("Recently active")

        if self.rotation_strategy == "round_robin":
            hours_idle = (
                (now - rep.last_assignment_at).total_seconds() / 3600 if rep.last_assignment_at else 999
            )
            score += min(20, hours_idle)
            if hours_idle > 4:
                reasons.append("Due for assignment (round robin)")

        return RepScore(rep=rep, score=round(score), reason=", ".join(reasons) or "Available representative")

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def assign(self, db: AsyncSession, criteria: AssignLead) -> AssignmentResult:
        """Assign a lead, or park it on the wait queue. Commits."""
        existing = await self.find_open_assignment(db, criteria.customer_id, criteria.inquiry_id)
        if existing is not None:
            logger.info(
                "Lead customer=%s inquiry=%s already assigned (assignment %s)",
                criteria.customer_id,
                criteria.inquiry_id,
                existing.id,
            )
            return AssignmentResult(
                outcome="already_assigned",
                assigned_to=existing.sales_rep_id,
                assignment_id=existing.id,
                confidence=existing.confidence,
                reason="Lead already has an open assignment",
            )

        reps = await self.available_reps(db)
        if not reps:
            return await self._enqueue_waiting(db, criteria)

        ranked = sorted((self.score_rep(rep, criteria) for rep in reps), key=lambda r: r.score, reverse=True)
        best = ranked[0]
        low_confidence = best.score < LOW_CONFIDENCE_THRESHOLD
        reason = "Best available option (low confidence)" if low_confidence else best.reason

        try:
            assignment = await self._create_assignment(db, criteria, best.rep, best.score, reason)
        except IntegrityError:
            # a concurrent assign job won the race on the open-assignment index
            await db.rollback()
            existing = await self.find_open_assignment(db, criteria.customer_id, criteria.inquiry_id)
            return AssignmentResult(
                outcome="already_assigned",
                assigned_to=existing.sales_rep_id if existing else None,
                assignment_id=existing.id if existing else None,
                reason="Lead already has an open assignment",
            )

        await db.commit()
        logger.info(
            "Lead customer=%s inquiry=%s assigned to %s (score %s)",
            criteria.customer_id,
            criteria.inquiry_id,
            best.rep.full_name,
            best.score,
        )

        alternatives = [
            {"rep_id": alt.rep.id, "name": alt.rep.full_name, "score": alt.score, "reason": alt.reason}
            for alt in ranked[1:4]
        ]
        return AssignmentResult(
            outcome="assigned",
            assigned_to=best.rep.id,
            sales_rep_name=best.rep.full_name,
            assignment_id=assignment.id,
            confidence=best.score,
            reason=reason,
            recommended_actions=LOW_CONFIDENCE_ACTIONS if low_confidence else recommended_actions(criteria),
            alternatives=alternatives,
            escalation_required=low_confidence and (criteria.urgency == Urgency.URGENT or criteria.lead_score > 80),
        )

    async def _create_assignment(
        self,
        db: AsyncSession,
        criteria: AssignLead,
        rep: SalesRepresentative,
        confidence: float,
        reason: str,
    ) -> LeadAssignment:
        now = self.clock()
        assignment = LeadAssignment(
            customer_id=criteria.customer_id,
            inquiry_id=criteria.inquiry_id,
            sales_rep_id=rep.id,
            status=AssignmentStatus.ACTIVE,
            priority=assignment_priority(criteria.urgency, criteria.lead_score),
            urgency=criteria.urgency,
            confidence=confidence,
            assignment_reason=reason,
            lead_score=criteria.lead_score,
            assigned_at=now,
            due_at=now + URGENCY_DELAYS[criteria.urgency],
        )
        db.add(assignment)
        await db.flush()

        await db.execute(
            update(SalesRepresentative)
            .where(SalesRepresentative.id == rep.id)
            .values(
                current_active_leads=SalesRepresentative.current_active_leads + 1,
                last_assignment_at=now,
            )
        )

        if criteria.inquiry_id:
            inquiry = await db.get(Inquiry, criteria.inquiry_id)
            if inquiry is not None and inquiry.status == InquiryStatus.NEW:
                inquiry.status = InquiryStatus.IN_PROGRESS

        await self._settle_waiting(db, criteria, WaitQueueStatus.ASSIGNED)

        lead = await resolve_lead_contact(db, criteria.customer_id, criteria.inquiry_id)
        await self.notifications.notify_rep_of_assignment(db, assignment, rep, lead)
        await self.notifications.acknowledge_customer(db, assignment, rep, lead)
        await self.follow_ups.schedule_initial_contact(db, assignment)
        return assignment

    async def _waiting_entries(self, db: AsyncSession, criteria: AssignLead) -> list[WaitQueueEntry]:
        conditions = []
        if criteria.customer_id:
            conditions.append(WaitQueueEntry.customer_id == criteria.customer_id)
        if criteria.inquiry_id:
            conditions.append(WaitQueueEntry.inquiry_id == criteria.inquiry_id)
        result = await db.execute(
            select(WaitQueueEntry).where(or_(*conditions), WaitQueueEntry.status == WaitQueueStatus.WAITING)
        )
        return list(result.scalars().all())

    async def _settle_waiting(self, db: AsyncSession, criteria: AssignLead, status: WaitQueueStatus) -> None:
        for entry in await self._waiting_entries(db, criteria):
            entry.status = status

    async def _enqueue_waiting(self, db: AsyncSession, criteria: AssignLead) -> AssignmentResult:
        reason = "No sales representatives available"
        entries = await self._waiting_entries(db, criteria)
        if entries:
            entry = entries[0]
            entry.attempts += 1
        else:
            entry = WaitQueueEntry(
                customer_id=criteria.customer_id,
                inquiry_id=criteria.inquiry_id,
                priority=WAIT_QUEUE_PRIORITY[criteria.urgency],
                reason=reason,
                status=WaitQueueStatus.WAITING,
                attempts=0,
                criteria=criteria.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
            db.add(entry)
        await db.flush()
        await db.commit()

        logger.warning(
            "No representative available for lead customer=%s inquiry=%s; waiting (entry %s)",
            criteria.customer_id,
            criteria.inquiry_id,
            entry.id,
        )
        return AssignmentResult(
            outcome="queued",
            reason=reason,
            wait_queue_entry_id=entry.id,
            recommended_actions=list(NO_REPS_ACTIONS),
            escalation_required=criteria.urgency == Urgency.URGENT,
        )

    async def retry_waiting(self, db: AsyncSession, limit: int = 50) -> dict:
        """Re-queue assignment jobs for waiting leads; expire ones that waited too often."""
        result = await db.execute(
            select(WaitQueueEntry)
            .where(WaitQueueEntry.status == WaitQueueStatus.WAITING)
            .order_by(WaitQueueEntry.priority, WaitQueueEntry.created_at)
            .limit(limit)
        )
        requeued, expired = 0, 0
        for entry in result.scalars().all():
            if entry.attempts >= MAX_WAIT_ATTEMPTS:
                entry.status = WaitQueueStatus.EXPIRED
                expired += 1
                continue
            await self.queue.add("assign_lead", entry.criteria, priority=entry.priority, db=db)
            requeued += 1
        await db.commit()
        if requeued or expired:
            logger.info("Wait queue retry: %d requeued, %d expired", requeued, expired)
        return {"requeued": requeued, "expired": expired}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _get(self, db: AsyncSession, assignment_id: uuid.UUID) -> LeadAssignment:
        assignment = await db.get(LeadAssignment, assignment_id)
        if assignment is None:
            raise InvalidJobPayload(f"Assignment {assignment_id} not found")
        return assignment

    async def update_status(self, db: AsyncSession, assignment_id: uuid.UUID, status: AssignmentStatus) -> LeadAssignment:
        """Move an assignment along its state machine. Commits."""
        status = AssignmentStatus(status)
        if status in (AssignmentStatus.CLOSED, AssignmentStatus.EXPIRED):
            return await self.close(db, assignment_id, status)

        assignment = await self._get(db, assignment_id)
        assignment.status = status
        if status == AssignmentStatus.CONTACTED:
            result = await db.execute(
                select(FollowUpTask).where(
                    FollowUpTask.assignment_id == assignment_id,
                    FollowUpTask.type == FollowUpType.INITIAL_CONTACT,
                    FollowUpTask.status == FollowUpStatus.PENDING,
                )
            )
            for task in result.scalars().all():
                task.status = FollowUpStatus.COMPLETED
                task.completed_at = self.clock()
        await db.commit()
        return assignment

    async def close(
        self,
        db: AsyncSession,
        assignment_id: uuid.UUID,
        status: AssignmentStatus = AssignmentStatus.CLOSED,
    ) -> LeadAssignment:
        """Close or expire an assignment, free the rep's slot and cancel reminders. Commits."""
        status = AssignmentStatus(status)
        if status not in (AssignmentStatus.CLOSED, AssignmentStatus.EXPIRED):
            raise InvalidStatusTransition("LeadAssignment", "open", status.value)

        assignment = await self._get(db, assignment_id)
        # Only the call that moves the row out of an open state frees the rep's slot
        moved = await db.execute(
            update(LeadAssignment)
            .where(LeadAssignment.id == assignment_id, LeadAssignment.status.in_(OPEN_ASSIGNMENT_STATUSES))
            .values(status=status, closed_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        if moved.rowcount != 1:
            await db.refresh(assignment)
            if assignment.status == status:
                logger.info("Assignment %s already %s", assignment_id, status.value)
                return assignment
            raise InvalidStatusTransition("LeadAssignment", assignment.status.value, status.value)

        await db.execute(
            update(SalesRepresentative)
            .where(SalesRepresentative.id == assignment.sales_rep_id)
            .values(
                current_active_leads=case(
                    (SalesRepresentative.current_active_leads > 0, SalesRepresentative.current_active_leads - 1),
                    else_=0,
                )
            )
        )
        cancelled = await self.follow_ups.cancel_for_assignment(db, assignment_id)
        await db.commit()
        logger.info("Assignment %s %s (%d reminder(s) cancelled)", assignment_id, status.value, cancelled)
        return assignment

    async def reassign(
        self,
        db: AsyncSession,
        assignment_id: uuid.UUID,
        reason: str,
        new_rep_id: uuid.UUID | None = None,
    ) -> AssignmentResult:
        """Close the current assignment and hand the lead to another representative."""
        current = await self._get(db, assignment_id)
        criteria = AssignLead(
            customer_id=current.customer_id,
            inquiry_id=current.inquiry_id,
            lead_score=current.lead_score or 0,
            urgency=Urgency.HIGH,
            source="reassignment",
        )

        new_rep = None
        if new_rep_id:
            new_rep = await db.get(SalesRepresentative, new_rep_id)
            if new_rep is None:
                raise InvalidJobPayload(f"Sales representative {new_rep_id} not found")

        await self.close(db, assignment_id, AssignmentStatus.CLOSED)

        if new_rep is None:
            return await self.assign(db, criteria)

        manual_reason = f"Manual reassignment: {reason}"
        assignment = await self._create_assignment(db, criteria, new_rep, 100, manual_reason)
        await db.commit()
        logger.info("Assignment %s reassigned to %s: %s", assignment_id, new_rep.full_name, reason)
        return AssignmentResult(
            outcome="assigned",
            assigned_to=new_rep.id,
            sales_rep_name=new_rep.full_name,
            assignment_id=assignment.id,
            confidence=100,
            reason=manual_reason,
            recommended_actions=recommended_actions(criteria),
        )
