"""Tests for lead scoring: factor functions, persistence and assignment hand-off."""

import uuid
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import select, func

from app.core.exceptions import InvalidJobPayload
from app.models.customer import CustomerTouchpoint, Purchase, TouchpointType
from app.models.inquiry import Inquiry, InquiryType
from app.models.job import Job
from app.models.lead_score import LeadScore, QualificationLevel
from app.models.vehicle import Vehicle
from app.schemas.jobs import JobPriority, UpdateLeadScore
from app.services.scoring import (
    INQUIRY_TYPE_SCORES,
    ScoringEngine,
    build_result,
    classify,
    contact_completeness_score,
    market_multiplier,
    response_time_score,
    timing_score,
)

SUNDAY_2AM = datetime(2026, 3, 1, 2, 0)


@pytest.fixture
def engine_at(queue, clock):
    return ScoringEngine(queue, clock=clock, business_timezone="UTC")


async def jobs_of_type(db, job_type):
    result = await db.execute(select(Job).where(Job.job_type == job_type))
    return result.scalars().all()


async def add_inquiry(db, **overrides) -> Inquiry:
    data = {
        "name": "Besnik Gashi",
        "email": "besnik@mail.com",
        "phone": "+38344555666",
        "inquiry_type": InquiryType.PURCHASE_INTENT,
        "message": "Is the 2023 Golf still available for purchase?",
    }
    data.update(overrides)
    inquiry = Inquiry(**data)
    db.add(inquiry)
    await db.commit()
    return inquiry


def test_classify_thresholds():
    assert classify(80.0) == (QualificationLevel.QUALIFIED, "A")
    assert classify(79.99) == (QualificationLevel.HOT, "B")
    assert classify(79.999) == (QualificationLevel.QUALIFIED, "A")
    assert classify(60) == (QualificationLevel.HOT, "B")
    assert classify(40) == (QualificationLevel.WARM, "C")
    assert classify(39.99) == (QualificationLevel.COLD, "D")
    assert classify(19.99) == (QualificationLevel.COLD, "F")


def test_response_time_buckets():
    created = datetime(2026, 3, 4, 10, 0)
    assert response_time_score(created, created + timedelta(minutes=59), created) == 100
    assert response_time_score(created, None, created + timedelta(hours=1)) == 80
    assert response_time_score(created, None, created + timedelta(hours=30)) == 60
    assert response_time_score(created, None, created + timedelta(days=3)) == 30


def test_contact_completeness():
    assert contact_completeness_score("a@mail.com", None, None, "Test") == 30
    assert contact_completeness_score("a@mail.com", "+38344000000", "x" * 21, "Ana Hoxha") == 100
    assert contact_completeness_score(None, None, "short", None) == 0


def test_timing_score():
    now = datetime(2026, 3, 4, 11, 0)
    wednesday_10am = datetime(2026, 3, 4, 10, 0)
    assert timing_score(wednesday_10am, wednesday_10am, now) == 100
    saturday_7pm = datetime(2026, 2, 28, 19, 0)
    assert timing_score(saturday_7pm, saturday_7pm, now) == 65
    assert timing_score(SUNDAY_2AM, SUNDAY_2AM, now) == 50


def test_market_multiplier():
    assert market_multiplier(120000, 100000) == 1.2
    assert market_multiplier(107000, 100000) == 1.1
    assert market_multiplier(100000, 100000) == 1.0
    assert market_multiplier(93000, 100000) == 0.9
    assert market_multiplier(80000, 100000) == 0.8
    assert market_multiplier(50000, 0) == 1.0


@pytest.mark.asyncio
async def test_general_email_only_inquiry_scores_warm(db, clock, engine_at):
    clock.now = SUNDAY_2AM + timedelta(minutes=90)
    inquiry = await add_inquiry(
        db,
        name="Test",
        email="lead@mail.com",
        phone=None,
        message=None,
        inquiry_type=InquiryType.GENERAL,
        created_at=SUNDAY_2AM,
    )

    result = await engine_at.score_inquiry(db, inquiry.id)

    assert result.factors == {
        "inquiry_type": 30,
        "contact_completeness": 30,
        "response_time": 80,
        "vehicle_appeal": 50,
        "timing": 65,
    }
    assert result.total_score == 49.0
    assert result.score_percentage == 49.0
    assert result.qualification_level == QualificationLevel.WARM
    assert result.grade == "C"
    assert "Follow up within 24 hours" in result.next_actions


@pytest.mark.asyncio
async def test_qualified_inquiry_queues_critical_assignment(db, clock, engine_at):
    inquiry = await add_inquiry(db, created_at=clock() - timedelta(minutes=10))

    outcome = await engine_at.score_and_queue(db, inquiry_id=inquiry.id, reason="New inquiry")

    assert outcome["score"] == 89.5
    assert outcome["qualification_level"] == "qualified"
    assert outcome["grade"] == "A"
    assert outcome["assignment_queued"] is True

    jobs = await jobs_of_type(db, "assign_lead")
    assert len(jobs) == 1
    assert jobs[0].priority == JobPriority.CRITICAL.value
    assert jobs[0].run_at == clock()
    assert jobs[0].payload["inquiryId"] == str(inquiry.id)
    assert jobs[0].payload["urgency"] == "high"
    assert jobs[0].payload["leadScore"] == 89.5

    row = await db.get(LeadScore, outcome["score_id"])
    assert row.inquiry_id == inquiry.id
    assert row.update_reason == "New inquiry"
    assert row.incremental_update is False


@pytest.mark.asyncio
async def test_hot_inquiry_queues_delayed_assignment_with_vehicle_criteria(db, clock, engine_at):
    vehicle = Vehicle(make="Hyundai", model="Tucson", year=2023, price=30000, body_type="SUV")
    db.add(vehicle)
    await db.commit()
    inquiry = await add_inquiry(
        db,
        inquiry_type=InquiryType.GENERAL,
        vehicle_id=vehicle.id,
        created_at=clock() - timedelta(minutes=10),
    )

    outcome = await engine_at.score_and_queue(db, inquiry_id=inquiry.id)

    assert outcome["score"] == 73.75
    assert outcome["qualification_level"] == "hot"
    jobs = await jobs_of_type(db, "assign_lead")
    assert len(jobs) == 1
    assert jobs[0].priority == JobPriority.HIGH.value
    assert jobs[0].run_at == clock() + timedelta(seconds=300)
    assert jobs[0].payload["urgency"] == "medium"
    assert jobs[0].payload["vehicleType"] == "SUV"
    assert jobs[0].payload["priceRange"] == {"min": 30000.0, "max": 30000.0}


@pytest.mark.asyncio
async def test_warm_and_cold_leads_are_not_assigned(db, clock, engine_at):
    inquiry = await add_inquiry(
        db,
        inquiry_type=InquiryType.GENERAL,
        phone=None,
        message=None,
        created_at=clock() - timedelta(days=5),
    )

    outcome = await engine_at.score_and_queue(db, inquiry_id=inquiry.id)

    assert outcome["assignment_queued"] is False
    assert await jobs_of_type(db, "assign_lead") == []


@pytest.mark.asyncio
async def test_rescoring_appends_a_new_row(db, clock, engine_at):
    inquiry = await add_inquiry(db, created_at=clock() - timedelta(minutes=10))

    first = await engine_at.score_and_queue(db, inquiry_id=inquiry.id)
    second = await engine_at.score_and_queue(db, inquiry_id=inquiry.id)

    count = await db.scalar(select(func.count(LeadScore.id)).where(LeadScore.inquiry_id == inquiry.id))
    assert count == 2
    assert first["score"] == second["score"]
    latest = await engine_at.latest_score(db, inquiry_id=inquiry.id)
    assert latest.id == second["score_id"]


@pytest.mark.asyncio
async def test_customer_score_blends_profile_and_engagement(db, engine_at, make_customer):
    customer = await make_customer()
    db.add_all([
        CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.TEST_DRIVE),
        CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.TEST_DRIVE),
        CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.INQUIRY),
    ])
    await db.commit()

    result = await engine_at.score_customer(db, customer.id)

    assert result.factors["engagement"] == 25
    assert result.factors["demographics"] == 65
    assert result.factors["lifecycle"] == 80
    assert result.factors["purchase_history"] == 0
    assert result.breakdown["market_multiplier"] == 1.0
    assert result.total_score == 31.25
    assert result.qualification_level == QualificationLevel.COLD
    assert result.grade == "D"
    assert "New customer - send welcome offer and showroom invitation" in result.recommendations


@pytest.mark.asyncio
async def test_inquiry_from_known_customer_uses_customer_scoring(db, clock, engine_at, make_customer):
    customer = await make_customer()
    inquiry = await add_inquiry(db, customer_id=customer.id, created_at=clock())

    outcome = await engine_at.score_and_queue(db, inquiry_id=inquiry.id)

    row = await db.get(LeadScore, outcome["score_id"])
    assert row.customer_id == customer.id
    assert row.inquiry_id == inquiry.id
    assert "lifecycle" in row.breakdown


@pytest.mark.asyncio
async def test_unknown_inquiry_raises(db, engine_at):
    with pytest.raises(InvalidJobPayload):
        await engine_at.score_and_queue(db, inquiry_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_score_delta_without_existing_score_queues_full_calculation(db, engine_at, make_customer):
    customer = await make_customer()

    outcome = await engine_at.apply_score_delta(
        db, UpdateLeadScore(email=customer.email.upper(), action="email_clicked", points=3)
    )

    assert outcome == {"updated": False, "reason": "no_existing_score", "full_calculation_queued": True}
    jobs = await jobs_of_type(db, "calculate_lead_score")
    assert len(jobs) == 1
    assert jobs[0].payload["customerId"] == str(customer.id)


@pytest.mark.asyncio
async def test_score_delta_crossing_into_qualified_queues_assignment(db, clock, engine_at, make_customer):
    customer = await make_customer()
    db.add(LeadScore(
        customer_id=customer.id,
        total_score=75.0,
        score_percentage=75.0,
        qualification_level=QualificationLevel.HOT,
        grade="B",
        calculated_at=clock() - timedelta(hours=1),
    ))
    await db.commit()

    outcome = await engine_at.apply_score_delta(
        db, UpdateLeadScore(customer_id=customer.id, action="test_drive_booked", points=10)
    )

    assert outcome["updated"] is True
    assert outcome["new_score"] == 85.0
    assert outcome["qualification_level"] == "qualified"
    assert outcome["assignment_queued"] is True

    latest = await engine_at.latest_score(db, customer_id=customer.id)
    assert latest.incremental_update is True
    assert latest.breakdown["action:test_drive_booked"] == 10
    jobs = await jobs_of_type(db, "assign_lead")
    assert [j.priority for j in jobs] == [JobPriority.CRITICAL.value]


@pytest.mark.asyncio
async def test_score_delta_is_clamped(db, clock, engine_at, make_customer):
    customer = await make_customer()
    db.add(LeadScore(
        customer_id=customer.id,
        total_score=5.0,
        score_percentage=5.0,
        qualification_level=QualificationLevel.COLD,
        grade="F",
        calculated_at=clock() - timedelta(hours=1),
    ))
    await db.commit()

    outcome = await engine_at.apply_score_delta(
        db, UpdateLeadScore(customer_id=customer.id, action="unsubscribe", points=-20)
    )

    assert outcome["new_score"] == 0.0
    assert outcome["assignment_queued"] is False


@pytest.mark.asyncio
async def test_calculate_job_records_forced_recalculation(db, pipeline, make_customer):
    customer = await make_customer()
    await pipeline.queue.add(
        "calculate_lead_score",
        {"customerId": customer.id, "forceRecalculation": True, "reason": "Profile updated"},
    )

    await pipeline.queue.run_pending(job_types=["calculate_lead_score"])

    latest = await pipeline.scoring.latest_score(db, customer_id=customer.id)
    assert latest.update_reason == "Profile updated (forced)"


@pytest.mark.asyncio
async def test_batch_calculation_counts_failures(db, pipeline, make_customer):
    customers = [await make_customer() for _ in range(3)]
    job = await pipeline.queue.add(
        "calculate_lead_score",
        {"batchCustomerIds": [c.id for c in customers] + [uuid.uuid4()]},
    )

    await pipeline.queue.run_pending(job_types=["calculate_lead_score"])

    stored = await db.get(Job, job.id, populate_existing=True)
    assert stored.result == {"scored": 3, "failed": 1, "total": 4, "assignments_queued": 0}


@pytest.mark.asyncio
async def test_batch_scoring_hands_qualified_and_hot_leads_to_assignment(db, clock, engine_at, make_customer):
    qualified, hot, cold = [await make_customer() for _ in range(3)]
    results = {
        qualified.id: build_result(95.0, {}, {}, []),
        hot.id: build_result(65.0, {}, {}, []),
        cold.id: build_result(25.0, {}, {}, []),
    }

    with patch.object(engine_at, "score_customer", AsyncMock(side_effect=lambda db, cid: results[cid])):
        outcome = await engine_at.batch_score(db, [qualified.id, hot.id, cold.id])

    assert outcome == {"scored": 3, "failed": 0, "total": 3, "assignments_queued": 2}
    jobs = {j.payload["customerId"]: j for j in await jobs_of_type(db, "assign_lead")}
    assert set(jobs) == {str(qualified.id), str(hot.id)}
    assert jobs[str(qualified.id)].priority == JobPriority.CRITICAL.value
    assert jobs[str(qualified.id)].run_at == clock()
    assert jobs[str(hot.id)].priority == JobPriority.HIGH.value
    assert jobs[str(hot.id)].run_at == clock() + timedelta(seconds=300)


@pytest.mark.asyncio
async def test_customer_score_never_drops_as_profile_improves(db, clock, engine_at, make_customer):
    customer = await make_customer(phone=None, marketing_opt_in=False)
    scores = [(await engine_at.score_customer(db, customer.id)).total_score]

    async def rescore():
        await db.commit()
        scores.append((await engine_at.score_customer(db, customer.id)).total_score)

    db.add(CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.WEBSITE_VISIT))
    await rescore()
    db.add(CustomerTouchpoint(customer_id=customer.id, touchpoint_type=TouchpointType.TEST_DRIVE))
    await rescore()
    db.add(Purchase(customer_id=customer.id, total_amount=20000, created_at=clock() - timedelta(days=25)))
    await rescore()
    db.add(Purchase(customer_id=customer.id, total_amount=40000, created_at=clock() - timedelta(days=5)))
    await rescore()
    customer.phone = "+38344999000"
    await rescore()
    customer.address = "Rr. Agim Ramadani 12, Prishtine"
    await rescore()
    customer.marketing_opt_in = True
    await rescore()
    customer.email_verified = True
    await rescore()

    assert scores == sorted(scores)
    assert scores[-1] > scores[0]


@pytest.mark.asyncio
async def test_inquiry_score_never_drops_as_contact_details_improve(db, clock, engine_at):
    created = clock() - timedelta(minutes=10)
    variants = [
        {"name": "Besnik", "email": None, "phone": None, "message": None},
        {"name": "Besnik", "email": "besnik@mail.com", "phone": None, "message": None},
        {"name": "Besnik", "email": "besnik@mail.com", "phone": "+38344555666", "message": None},
        {"name": "Besnik", "email": "besnik@mail.com", "phone": "+38344555666",
         "message": "Is the 2023 Golf still available?"},
        {"name": "Besnik Gashi", "email": "besnik@mail.com", "phone": "+38344555666",
         "message": "Is the 2023 Golf still available?"},
    ]

    scores = []
    for fields in variants:
        inquiry = await add_inquiry(db, inquiry_type=InquiryType.GENERAL, created_at=created, **fields)
        scores.append((await engine_at.score_inquiry(db, inquiry.id)).total_score)

    assert scores == sorted(scores)
    assert scores[-1] > scores[0]


@pytest.mark.asyncio
async def test_inquiry_score_follows_intent_of_inquiry_type(db, clock, engine_at):
    created = clock() - timedelta(minutes=10)
    scores = []
    for inquiry_type in sorted(INQUIRY_TYPE_SCORES, key=INQUIRY_TYPE_SCORES.get):
        inquiry = await add_inquiry(db, inquiry_type=inquiry_type, created_at=created)
        scores.append((await engine_at.score_inquiry(db, inquiry.id)).total_score)

    assert scores == sorted(scores)
    assert scores[-1] > scores[0]


@pytest.mark.asyncio
async def test_inquiry_score_never_drops_as_vehicle_gets_more_attention(db, clock, engine_at):
    vehicle = Vehicle(make="Skoda", model="Kodiaq", year=2019, price=24000, mileage=90000)
    db.add(vehicle)
    await db.commit()
    inquiry = await add_inquiry(
        db, inquiry_type=InquiryType.GENERAL, vehicle_id=vehicle.id, created_at=clock() - timedelta(minutes=10)
    )

    scores = []
    for views, inquiries in [(0, 0), (50, 0), (50, 1), (300, 2), (300, 5)]:
        vehicle.view_count = views
        vehicle.inquiry_count = inquiries
        await db.commit()
        scores.append((await engine_at.score_inquiry(db, inquiry.id)).total_score)

    assert scores == sorted(scores)
    assert scores[-1] > scores[0]
