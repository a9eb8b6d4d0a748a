"""Lead queue handlers: scoring, assignment and follow-up reminders."""

import logging
from dataclasses import asdict

from app.models.job import Job
from app.schemas.jobs import AssignLead, CalculateLeadScore, FollowUpReminder, UpdateLeadScore
from app.services.assignment import AssignmentEngine
from app.services.follow_up import FollowUpScheduler
from app.services.queue_runtime import QueueRuntime
from app.services.scoring import ScoringEngine

logger = logging.getLogger(__name__)


class LeadWorker:
    def __init__(
        self,
        queue: QueueRuntime,
        scoring: ScoringEngine,
        assignments: AssignmentEngine,
        follow_ups: FollowUpScheduler,
    ):
        self.queue = queue
        self.scoring = scoring
        self.assignments = assignments
        self.follow_ups = follow_ups
        self.session_factory = queue.session_factory

    def register(self) -> None:
        self.queue.process("calculate_lead_score", self.handle_calculate_score)
        self.queue.process("assign_lead", self.handle_assign)
        self.queue.process("update_lead_score", self.handle_score_update)
        self.queue.process("follow_up_reminder", self.handle_follow_up)

    async def handle_calculate_score(self, job: Job, payload: CalculateLeadScore) -> dict:
        reason = payload.reason
        if payload.force_recalculation:
            reason = f"{reason} (forced)" if reason else "Forced recalculation"

        async with self.session_factory() as db:
            if payload.batch_customer_ids:
                return await self.scoring.batch_score(db, payload.batch_customer_ids, reason)
            return await self.scoring.score_and_queue(
                db, customer_id=payload.customer_id, inquiry_id=payload.inquiry_id, reason=reason
            )

    async def handle_assign(self, job: Job, payload: AssignLead) -> dict:
        async with self.session_factory() as db:
            result = await self.assignments.assign(db, payload)
        return asdict(result)

    async def handle_score_update(self, job: Job, payload: UpdateLeadScore) -> dict:
        async with self.session_factory() as db:
            return await self.scoring.apply_score_delta(db, payload)

    async def handle_follow_up(self, job: Job, payload: FollowUpReminder) -> dict:
        async with self.session_factory() as db:
            return await self.follow_ups.handle_reminder(db, payload.assignment_id, payload.type)
