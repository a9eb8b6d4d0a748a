"""Follow-up reminders tied to lead assignments."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.exceptions import InvalidJobPayload
from app.models.lead_assignment import (
    LeadAssignment,
    FollowUpTask,
    FollowUpType,
    Urgency,
)
from app.models.sales_rep import SalesRepresentative
from app.models.status import AssignmentStatus, FollowUpStatus, OPEN_ASSIGNMENT_STATUSES
from app.schemas.jobs import JobPriority
from app.services.notification_service import NotificationService, resolve_lead_contact
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)

# How long a representative has to make first contact
URGENCY_DELAYS = {
    Urgency.URGENT: timedelta(minutes=15),
    Urgency.HIGH: timedelta(hours=1),
    Urgency.MEDIUM: timedelta(hours=4),
    Urgency.LOW: timedelta(hours=24),
}
FOLLOW_UP_DELAY = timedelta(hours=24)


class FollowUpScheduler:
    def __init__(
        self,
        queue: QueueRuntime,
        notifications: NotificationService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.notifications = notifications
        self.clock = clock

    async def _schedule(
        self,
        db: AsyncSession,
        assignment: LeadAssignment,
        task_type: FollowUpType,
        delay: timedelta,
        description: str,
    ) -> FollowUpTask:
        task = FollowUpTask(
            assignment_id=assignment.id,
            sales_rep_id=assignment.sales_rep_id,
            type=task_type,
            status=FollowUpStatus.PENDING,
            description=description,
            due_at=self.clock() + delay,
        )
        db.add(task)
        await db.flush()
        await self.queue.add(
            "follow_up_reminder",
            {"assignmentId": assignment.id, "type": task_type.value},
            priority=JobPriority.NORMAL.value,
            delay=delay.total_seconds(),
            dedupe_key=f"follow-up:{task.id}",
            db=db,
        )
        return task

    async def schedule_initial_contact(self, db: AsyncSession, assignment: LeadAssignment) -> FollowUpTask:
        """Create the INITIAL_CONTACT task and its reminder job. Caller commits."""
        delay = URGENCY_DELAYS.get(Urgency(assignment.urgency), URGENCY_DELAYS[Urgency.MEDIUM])
        task = await self._schedule(
            db, assignment, FollowUpType.INITIAL_CONTACT, delay, "Make initial contact with lead"
        )
        logger.info(
            "Scheduled initial contact reminder for assignment %s in %s",
            assignment.id,
            delay,
        )
        return task

    async def handle_reminder(self, db: AsyncSession, assignment_id: uuid.UUID, reminder_type: FollowUpType) -> dict:
        """Run a due reminder: email the representative, chain one follow-up."""
        assignment = await db.get(LeadAssignment, assignment_id)
        if assignment is None:
            raise InvalidJobPayload(f"Assignment {assignment_id} not found")

        if assignment.status not in OPEN_ASSIGNMENT_STATUSES:
            cancelled = await self.cancel_for_assignment(db, assignment_id)
            await db.commit()
            logger.info(
                "Skipping %s reminder: assignment %s is %s",
                reminder_type.value,
                assignment_id,
                assignment.status.value,
            )
            return {"sent": False, "reason": "assignment_not_open", "cancelled_tasks": cancelled}

        result = await db.execute(
            select(FollowUpTask)
            .where(
                FollowUpTask.assignment_id == assignment_id,
                FollowUpTask.type == reminder_type,
                FollowUpTask.status == FollowUpStatus.PENDING,
            )
            .order_by(FollowUpTask.due_at)
            .limit(1)
        )
        task = result.scalar_one_or_none()
        if task is None:
            logger.info("No pending %s task for assignment %s", reminder_type.value, assignment_id)
            return {"sent": False, "reason": "no_pending_task"}

        rep = await db.get(SalesRepresentative, assignment.sales_rep_id)
        lead = await resolve_lead_contact(db, assignment.customer_id, assignment.inquiry_id)
        await self.notifications.remind_rep(db, assignment, rep, lead, reminder_type, task.id)

        follow_up_scheduled = False
        if reminder_type == FollowUpType.INITIAL_CONTACT and assignment.status == AssignmentStatus.ACTIVE:
            await self._schedule(
                db, assignment, FollowUpType.FOLLOW_UP, FOLLOW_UP_DELAY, "Follow up with lead"
            )
            follow_up_scheduled = True

        await db.commit()
        logger.info("Sent %s reminder for assignment %s", reminder_type.value, assignment_id)
        return {"sent": True, "task_id": task.id, "follow_up_scheduled": follow_up_scheduled}

    async def complete_task(self, db: AsyncSession, task_id: uuid.UUID) -> FollowUpTask:
        task = await db.get(FollowUpTask, task_id)
        if task is None:
            raise InvalidJobPayload(f"Follow-up task {task_id} not found")
        task.status = FollowUpStatus.COMPLETED
        task.completed_at = self.clock()
        await db.commit()
        return task

    async def cancel_for_assignment(self, db: AsyncSession, assignment_id: uuid.UUID) -> int:
        """Cancel every pending task of an assignment. Caller commits."""
        result = await db.execute(
            select(FollowUpTask).where(
                FollowUpTask.assignment_id == assignment_id,
                FollowUpTask.status == FollowUpStatus.PENDING,
            )
        )
        tasks = result.scalars().all()
        for task in tasks:
            task.status = FollowUpStatus.CANCELLED
        return len(tasks)
