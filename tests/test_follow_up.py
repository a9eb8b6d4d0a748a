"""Tests for follow-up reminders."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.job import Job, JobStatus
from app.models.lead_assignment import FollowUpTask, FollowUpType, Urgency
from app.models.status import FollowUpStatus
from app.schemas.jobs import AssignLead


async def tasks_for(db, assignment_id):
    result = await db.execute(
        select(FollowUpTask)
        .where(FollowUpTask.assignment_id == assignment_id)
        .order_by(FollowUpTask.due_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.fixture
def assigned_lead(db, pipeline, make_customer, make_rep):
    async def _assign(urgency=Urgency.MEDIUM):
        await make_rep()
        customer = await make_customer()
        return await pipeline.assignments.assign(
            db, AssignLead(customer_id=customer.id, lead_score=70, urgency=urgency)
        )

    return _assign


@pytest.mark.asyncio
async def test_initial_contact_due_depends_on_urgency(db, clock, assigned_lead):
    result = await assigned_lead(Urgency.URGENT)

    tasks = await tasks_for(db, result.assignment_id)

    assert len(tasks) == 1
    assert tasks[0].type == FollowUpType.INITIAL_CONTACT
    assert tasks[0].due_at == clock() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_reminder_emails_rep_and_chains_follow_up(db, clock, pipeline, assigned_lead):
    result = await assigned_lead()

    outcome = await pipeline.follow_ups.handle_reminder(db, result.assignment_id, FollowUpType.INITIAL_CONTACT)

    assert outcome["sent"] is True
    assert outcome["follow_up_scheduled"] is True
    reminder_email = await pipeline.queue.find(db, f"follow-up-reminder:{outcome['task_id']}")
    assert reminder_email is not None
    assert reminder_email.payload["subject"].startswith("Reminder: contact")

    tasks = await tasks_for(db, result.assignment_id)
    follow_up = [t for t in tasks if t.type == FollowUpType.FOLLOW_UP]
    assert len(follow_up) == 1
    assert follow_up[0].due_at == clock() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_reminder_for_closed_assignment_is_skipped(db, pipeline, assigned_lead):
    result = await assigned_lead()
    await pipeline.assignments.close(db, result.assignment_id)

    outcome = await pipeline.follow_ups.handle_reminder(db, result.assignment_id, FollowUpType.INITIAL_CONTACT)

    assert outcome["sent"] is False
    assert outcome["reason"] == "assignment_not_open"
    tasks = await tasks_for(db, result.assignment_id)
    assert {t.status for t in tasks} == {FollowUpStatus.CANCELLED}


@pytest.mark.asyncio
async def test_reminder_job_runs_when_due(db, clock, pipeline, assigned_lead):
    result = await assigned_lead(Urgency.HIGH)

    assert await pipeline.queue.run_pending(job_types=["follow_up_reminder"]) == 0

    clock.advance(hours=1)
    assert await pipeline.queue.run_pending(job_types=["follow_up_reminder"]) == 1

    rows = await db.execute(
        select(Job)
        .where(Job.job_type == "follow_up_reminder")
        .order_by(Job.run_at)
        .execution_options(populate_existing=True)
    )
    first, chained = rows.scalars().all()
    assert first.status == JobStatus.COMPLETED
    assert first.result["sent"] is True
    assert chained.status == JobStatus.WAITING
    assert chained.payload["type"] == "follow_up"
    assert chained.run_at == clock() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_complete_task(db, clock, pipeline, assigned_lead):
    result = await assigned_lead()
    task = (await tasks_for(db, result.assignment_id))[0]

    completed = await pipeline.follow_ups.complete_task(db, task.id)

    assert completed.status == FollowUpStatus.COMPLETED
    assert completed.completed_at == clock()
