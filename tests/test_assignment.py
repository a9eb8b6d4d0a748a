"""Tests for lead assignment, the wait queue and assignment lifecycle."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidStatusTransition
from app.models.inquiry import Inquiry, InquiryType
from app.models.job import Job
from app.models.lead_assignment import (
    LeadAssignment,
    WaitQueueEntry,
    FollowUpTask,
    FollowUpType,
    AssignmentPriority,
    Urgency,
)
from app.models.status import AssignmentStatus, FollowUpStatus, InquiryStatus, WaitQueueStatus
from app.schemas.jobs import AssignLead
from app.services.assignment import MAX_WAIT_ATTEMPTS, assignment_priority, price_category


async def jobs_of_type(db, job_type):
    result = await db.execute(select(Job).where(Job.job_type == job_type).order_by(Job.created_at))
    return result.scalars().all()


async def pending_tasks(db, assignment_id):
    result = await db.execute(
        select(FollowUpTask).where(
            FollowUpTask.assignment_id == assignment_id,
            FollowUpTask.status == FollowUpStatus.PENDING,
        )
    )
    return result.scalars().all()


def test_price_category():
    assert price_category(8000) == "BUDGET"
    assert price_category(18000) == "MID_RANGE"
    assert price_category(30000) == "PREMIUM"
    assert price_category(50000) == "LUXURY"


def test_assignment_priority():
    assert assignment_priority(Urgency.URGENT, 10) == AssignmentPriority.HIGH
    assert assignment_priority(Urgency.LOW, 85) == AssignmentPriority.HIGH
    assert assignment_priority(Urgency.HIGH, 10) == AssignmentPriority.MEDIUM
    assert assignment_priority(Urgency.MEDIUM, 50) == AssignmentPriority.LOW


@pytest.mark.asyncio
async def test_assign_picks_best_rep_and_queues_side_effects(db, clock, pipeline, make_customer, make_rep):
    generalist = await make_rep(conversion_rate=5.0)
    specialist = await make_rep(expertise=["SUV", "PREMIUM"], conversion_rate=5.0)
    customer = await make_customer()

    result = await pipeline.assignments.assign(
        db,
        AssignLead(customer_id=customer.id, lead_score=85, urgency=Urgency.HIGH, vehicle_type="SUV",
                   price_range={"min": 30000, "max": 30000}),
    )

    assert result.outcome == "assigned"
    assert result.assigned_to == specialist.id
    assert "SUV specialist" in result.reason
    assert "PREMIUM specialist" in result.reason
    assert result.alternatives[0]["rep_id"] == generalist.id
    assert result.escalation_required is False

    assignment = await db.get(LeadAssignment, result.assignment_id)
    assert assignment.status == AssignmentStatus.ACTIVE
    assert assignment.priority == AssignmentPriority.HIGH
    assert assignment.due_at == clock() + timedelta(hours=1)

    await db.refresh(specialist)
    assert specialist.current_active_leads == 1
    assert specialist.last_assignment_at == clock()

    emails = await jobs_of_type(db, "send_single_email")
    assert {job.dedupe_key for job in emails} == {
        f"assignment-notice:{assignment.id}",
        f"assignment-ack:{assignment.id}",
    }
    notice = next(job for job in emails if job.dedupe_key.startswith("assignment-notice"))
    assert notice.payload["to"] == specialist.email

    tasks = await pending_tasks(db, assignment.id)
    assert [t.type for t in tasks] == [FollowUpType.INITIAL_CONTACT]
    reminders = await jobs_of_type(db, "follow_up_reminder")
    assert len(reminders) == 1
    assert reminders[0].run_at == clock() + timedelta(hours=1)
    assert reminders[0].dedupe_key == f"follow-up:{tasks[0].id}"


@pytest.mark.asyncio
async def test_lead_is_never_assigned_twice(db, pipeline, make_customer, make_rep):
    rep = await make_rep()
    customer = await make_customer()
    criteria = AssignLead(customer_id=customer.id, lead_score=90)

    first = await pipeline.assignments.assign(db, criteria)
    second = await pipeline.assignments.assign(db, criteria)

    assert first.outcome == "assigned"
    assert second.outcome == "already_assigned"
    assert second.assignment_id == first.assignment_id
    await db.refresh(rep)
    assert rep.current_active_leads == 1


@pytest.mark.asyncio
async def test_inquiry_moves_to_in_progress_on_assignment(db, pipeline, make_rep):
    await make_rep()
    inquiry = Inquiry(name="Ardit Morina", email="ardit@mail.com", inquiry_type=InquiryType.TEST_DRIVE)
    db.add(inquiry)
    await db.commit()

    result = await pipeline.assignments.assign(db, AssignLead(inquiry_id=inquiry.id, lead_score=70))

    assert result.assigned
    await db.refresh(inquiry)
    assert inquiry.status == InquiryStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_reps_at_capacity_or_off_shift_are_skipped(db, clock, pipeline, make_customer, make_rep):
    full = await make_rep(current_active_leads=15, max_active_leads=15)
    await make_rep(is_available=False)
    night_shift = await make_rep(work_start_hour=20, work_end_hour=23)
    day_shift = await make_rep(conversion_rate=1.0)
    customer = await make_customer()

    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=65))

    assert result.assigned_to == day_shift.id
    assert result.assigned_to not in (full.id, night_shift.id)


@pytest.mark.asyncio
async def test_no_available_rep_parks_lead_on_wait_queue(db, pipeline, make_customer):
    customer = await make_customer()
    criteria = AssignLead(customer_id=customer.id, lead_score=88, urgency=Urgency.URGENT)

    first = await pipeline.assignments.assign(db, criteria)
    second = await pipeline.assignments.assign(db, criteria)

    assert first.outcome == "queued"
    assert first.escalation_required is True
    assert "Add lead to queue for next available representative" in first.recommended_actions
    assert second.wait_queue_entry_id == first.wait_queue_entry_id

    entry = await db.get(WaitQueueEntry, first.wait_queue_entry_id, populate_existing=True)
    assert entry.status == WaitQueueStatus.WAITING
    assert entry.attempts == 1
    assert entry.priority == 1
    assert entry.criteria["customerId"] == str(customer.id)


@pytest.mark.asyncio
async def test_wait_queue_retry_assigns_once_rep_is_free(db, pipeline, make_customer, make_rep):
    customer = await make_customer()
    queued = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=82))
    rep = await make_rep()

    retry = await pipeline.assignments.retry_waiting(db)
    assert retry == {"requeued": 1, "expired": 0}

    await pipeline.queue.run_pending(job_types=["assign_lead"])

    entry = await db.get(WaitQueueEntry, queued.wait_queue_entry_id, populate_existing=True)
    assert entry.status == WaitQueueStatus.ASSIGNED
    assignment = await pipeline.assignments.find_open_assignment(db, customer.id, None)
    assert assignment.sales_rep_id == rep.id


@pytest.mark.asyncio
async def test_wait_queue_entry_expires_after_max_attempts(db, pipeline, make_customer):
    customer = await make_customer()
    queued = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=82))
    entry = await db.get(WaitQueueEntry, queued.wait_queue_entry_id)
    entry.attempts = MAX_WAIT_ATTEMPTS
    await db.commit()

    retry = await pipeline.assignments.retry_waiting(db)

    assert retry == {"requeued": 0, "expired": 1}
    await db.refresh(entry)
    assert entry.status == WaitQueueStatus.EXPIRED


@pytest.mark.asyncio
async def test_off_hours_lead_waits(db, clock, pipeline, make_customer, make_rep):
    clock.now = datetime(2026, 3, 8, 12, 0)  # Sunday
    await make_rep()
    customer = await make_customer()

    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=90))

    assert result.outcome == "queued"


@pytest.mark.asyncio
async def test_contacted_completes_initial_contact_task(db, pipeline, make_customer, make_rep):
    await make_rep()
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))

    assignment = await pipeline.assignments.update_status(db, result.assignment_id, AssignmentStatus.CONTACTED)

    assert assignment.status == AssignmentStatus.CONTACTED
    assert await pending_tasks(db, result.assignment_id) == []


@pytest.mark.asyncio
async def test_close_frees_rep_and_cancels_reminders(db, clock, pipeline, make_customer, make_rep):
    rep = await make_rep()
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))

    assignment = await pipeline.assignments.close(db, result.assignment_id)

    assert assignment.status == AssignmentStatus.CLOSED
    assert assignment.closed_at == clock()
    await db.refresh(rep)
    assert rep.current_active_leads == 0
    assert await pending_tasks(db, result.assignment_id) == []

    # a closed lead can be assigned again
    again = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))
    assert again.outcome == "assigned"
    assert again.assignment_id != result.assignment_id


@pytest.mark.asyncio
async def test_repeated_close_frees_the_rep_slot_once(db, clock, pipeline, make_customer, make_rep):
    rep = await make_rep(current_active_leads=3)
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))
    await db.refresh(rep)
    assert rep.current_active_leads == 4

    first = await pipeline.assignments.close(db, result.assignment_id)
    closed_at = first.closed_at
    clock.advance(minutes=5)
    again = await pipeline.assignments.update_status(db, result.assignment_id, AssignmentStatus.CLOSED)

    assert again.status == AssignmentStatus.CLOSED
    assert again.closed_at == closed_at
    await db.refresh(rep)
    assert rep.current_active_leads == 3

    with pytest.raises(InvalidStatusTransition):
        await pipeline.assignments.close(db, result.assignment_id, AssignmentStatus.EXPIRED)
    await db.refresh(rep)
    assert rep.current_active_leads == 3


@pytest.mark.asyncio
async def test_closed_assignment_cannot_reopen(db, pipeline, make_customer, make_rep):
    await make_rep()
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))
    await pipeline.assignments.close(db, result.assignment_id)

    with pytest.raises(InvalidStatusTransition):
        await pipeline.assignments.update_status(db, result.assignment_id, AssignmentStatus.CONTACTED)


@pytest.mark.asyncio
async def test_manual_reassignment(db, pipeline, make_customer, make_rep):
    first_rep = await make_rep()
    second_rep = await make_rep()
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))
    previous_rep = first_rep if result.assigned_to == first_rep.id else second_rep
    target = second_rep if previous_rep is first_rep else first_rep

    moved = await pipeline.assignments.reassign(db, result.assignment_id, "Customer asked", new_rep_id=target.id)

    assert moved.assigned_to == target.id
    assert moved.confidence == 100
    old = await db.get(LeadAssignment, result.assignment_id, populate_existing=True)
    assert old.status == AssignmentStatus.CLOSED
    await db.refresh(previous_rep)
    await db.refresh(target)
    assert previous_rep.current_active_leads == 0
    assert target.current_active_leads == 1
