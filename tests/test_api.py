"""Tests for inquiry, lead, campaign and queue endpoints."""

import uuid

import pytest
from sqlalchemy import select

from app.models.campaign import EmailCampaign
from app.models.customer import CustomerTouchpoint
from app.models.job import Job
from app.models.lead_score import LeadScore, QualificationLevel
from app.models.status import CampaignStatus
from app.models.vehicle import Vehicle
from app.schemas.jobs import AssignLead


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_inquiry_queues_scoring(client, db):
    vehicle = Vehicle(make="Skoda", model="Octavia", year=2022, price=21500)
    db.add(vehicle)
    await db.commit()

    response = await client.post("/api/v1/inquiries/", json={
        "name": "Liridon Hasani",
        "email": "liridon@mail.com",
        "inquiry_type": "test_drive",
        "message": "Can I test drive the Octavia on Saturday?",
        "vehicle_id": str(vehicle.id),
    })

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "new"
    assert body["customer_id"] is None

    job = (await db.execute(select(Job).where(Job.job_type == "calculate_lead_score"))).scalar_one()
    assert job.payload["inquiryId"] == body["id"]
    assert job.priority == 2
    await db.refresh(vehicle)
    assert vehicle.inquiry_count == 1


@pytest.mark.asyncio
async def test_inquiry_from_known_customer_records_touchpoint(client, db, make_customer):
    customer = await make_customer(email="mimoza@mail.com")

    response = await client.post("/api/v1/inquiries/", json={"name": "Mimoza", "email": "MIMOZA@mail.com"})

    assert response.status_code == 201
    assert response.json()["customer_id"] == str(customer.id)
    touchpoints = (await db.execute(
        select(CustomerTouchpoint).where(CustomerTouchpoint.customer_id == customer.id)
    )).scalars().all()
    assert len(touchpoints) == 1


@pytest.mark.asyncio
async def test_inquiry_requires_contact_details(client):
    response = await client.post("/api/v1/inquiries/", json={"name": "Anon"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_inquiry_for_unknown_vehicle(client):
    response = await client.post("/api/v1/inquiries/", json={
        "name": "Anon", "phone": "+38344000000", "vehicle_id": str(uuid.uuid4())
    })
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_inquiry(client):
    created = await client.post("/api/v1/inquiries/", json={"name": "Driton", "phone": "044 222 333"})

    response = await client.get(f"/api/v1/inquiries/{created.json()['id']}")
    assert response.status_code == 200
    assert response.json()["phone"] == "044 222 333"

    missing = await client.get(f"/api/v1/inquiries/{uuid.uuid4()}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_lead_event_is_queued(client, db, make_customer):
    customer = await make_customer()

    response = await client.post("/api/v1/leads/events", json={
        "customer_id": str(customer.id), "action": "email_clicked", "points": 3
    })

    assert response.status_code == 202
    job = await db.get(Job, uuid.UUID(response.json()["job_id"]))
    assert job.job_type == "update_lead_score"
    assert job.payload == {"customerId": str(customer.id), "action": "email_clicked", "points": 3.0}


@pytest.mark.asyncio
async def test_latest_score(client, db, clock, make_customer):
    customer = await make_customer()

    missing = await client.get(f"/api/v1/leads/{customer.id}/score")
    assert missing.status_code == 404

    db.add(LeadScore(
        customer_id=customer.id,
        total_score=64.5,
        score_percentage=64.5,
        qualification_level=QualificationLevel.HOT,
        grade="B",
        calculated_at=clock(),
    ))
    await db.commit()

    response = await client.get(f"/api/v1/leads/{customer.id}/score")
    assert response.status_code == 200
    assert response.json()["qualification_level"] == "hot"
    assert response.json()["grade"] == "B"


@pytest.mark.asyncio
async def test_assignment_status_update(client, db, pipeline, make_customer, make_rep):
    await make_rep()
    customer = await make_customer()
    result = await pipeline.assignments.assign(db, AssignLead(customer_id=customer.id, lead_score=75))
    url = f"/api/v1/leads/assignments/{result.assignment_id}/status"

    contacted = await client.put(url, json={"status": "contacted"})
    assert contacted.status_code == 200
    assert contacted.json()["status"] == "contacted"

    closed = await client.put(url, json={"status": "closed"})
    assert closed.status_code == 200
    assert closed.json()["closed_at"] is not None

    reopened = await client.put(url, json={"status": "active"})
    assert reopened.status_code == 409

    missing = await client.put(f"/api/v1/leads/assignments/{uuid.uuid4()}/status", json={"status": "closed"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_send_campaign(client, db):
    campaign = EmailCampaign(name="Launch", subject="New arrivals", content="See the new models")
    db.add(campaign)
    await db.commit()
    url = f"/api/v1/campaigns/email/{campaign.id}/send"

    response = await client.post(url, json={"batch_size": 25})

    assert response.status_code == 202
    assert response.json()["status"] == "queued"
    job = await db.get(Job, uuid.UUID(response.json()["job_id"]))
    assert job.payload == {"campaignId": str(campaign.id), "batchSize": 25, "startIndex": 0}


@pytest.mark.asyncio
async def test_send_campaign_errors(client, db):
    sent = EmailCampaign(name="Old", subject="Old", content="Old", status=CampaignStatus.SENT)
    db.add(sent)
    await db.commit()

    not_sendable = await client.post(f"/api/v1/campaigns/email/{sent.id}/send")
    assert not_sendable.status_code == 409

    unknown = await client.post(f"/api/v1/campaigns/email/{uuid.uuid4()}/send")
    assert unknown.status_code == 404

    channel = await client.post(f"/api/v1/campaigns/fax/{sent.id}/send")
    assert channel.status_code == 404

    too_big = await client.post(f"/api/v1/campaigns/sms/{sent.id}/send", json={"batch_size": 5000})
    assert too_big.status_code == 422


@pytest.mark.asyncio
async def test_queue_health(client, pipeline):
    await pipeline.queue.add("send_single_sms", {"to": "+38344123456", "message": "Hi"})

    response = await client.get("/api/v1/queue/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["queues"]["sms"]["waiting"] == 1
