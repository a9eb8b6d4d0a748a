"""Shared test fixtures for the lead pipeline tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
Provider transports are replaced with recording fakes and time is frozen.
"""

import random
from datetime import datetime, timedelta
from itertools import count

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.deps import get_pipeline
from app.core.exceptions import ProviderError
from app.main import app
from app.services.personalization import DealershipIdentity
from app.services.pipeline import build_pipeline
from app.services.queue_runtime import QueueRuntime
from app.services.sms import SmsSendResult

# Import all models to ensure they're registered with Base.metadata
from app.models.customer import Customer, Purchase, CustomerTouchpoint
from app.models.vehicle import Vehicle
from app.models.inquiry import Inquiry
from app.models.lead_score import LeadScore
from app.models.sales_rep import SalesRepresentative
from app.models.lead_assignment import LeadAssignment, WaitQueueEntry, FollowUpTask
from app.models.campaign import Segment, SegmentMembership, EmailCampaign, SmsCampaign
from app.models.delivery_log import EmailLog, SmsLog
from app.models.job import Job


# Use aiosqlite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Wednesday 10:00 UTC, inside default working hours
NOW = datetime(2026, 3, 4, 10, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeEmailTransport:
    """Records sends instead of calling SendGrid."""

    enabled = True

    def __init__(self):
        self.sent = []
        self.error = None

    async def send(self, to, subject, content, html_content=None):
        if self.error:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "content": content, "html_content": html_content})
        return f"sg-{len(self.sent)}"


class FakeSmsTransport:
    """Records sends instead of calling Twilio."""

    enabled = True

    def __init__(self):
        self.sent = []
        self.error = None

    async def send(self, to, message, media_urls=None, sender_name=None):
        if self.error:
            raise self.error
        self.sent.append({"to": to, "message": message, "media_urls": media_urls, "sender_name": sender_name})
        return SmsSendResult(
            message_id=f"SM{len(self.sent):032d}",
            status="queued",
            to=to,
            cost=0.0075,
            segments=1,
        )


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """Direct DB session for test setup/assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def identity():
    return DealershipIdentity(
        name="Auto Dardania",
        phone="+38344123456",
        email="sales@autodardania.com",
        site_url="https://autodardania.com",
    )


@pytest.fixture
def email_transport():
    return FakeEmailTransport()


@pytest.fixture
def sms_transport():
    return FakeSmsTransport()


@pytest.fixture
def queue(session_factory, clock):
    return QueueRuntime(session_factory=session_factory, clock=clock, poll_interval=0.01)


@pytest.fixture
def pipeline(queue, email_transport, sms_transport, clock, identity):
    return build_pipeline(
        queue=queue,
        email_transport=email_transport,
        sms_transport=sms_transport,
        rng=random.Random(42),
        clock=clock,
        identity=identity,
    )


@pytest_asyncio.fixture
async def client(pipeline, session_factory):
    """Async HTTP test client wired to the test database and pipeline."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


_seq = count(1)


@pytest.fixture
def make_customer(db, clock):
    async def _make(**overrides) -> Customer:
        n = next(_seq)
        data = {
            "first_name": "Arben",
            "last_name": f"Krasniqi{n}",
            "email": f"arben{n}@mail.com",
            "phone": f"+3834400{n:04d}",
            "marketing_opt_in": True,
            "sms_opt_in": True,
            "created_at": clock() - timedelta(days=10),
        }
        data.update(overrides)
        customer = Customer(**data)
        db.add(customer)
        await db.commit()
        return customer

    return _make


@pytest.fixture
def make_rep(db):
    async def _make(**overrides) -> SalesRepresentative:
        n = next(_seq)
        data = {
            "first_name": "Drita",
            "last_name": f"Berisha{n}",
            "email": f"drita{n}@autodardania.com",
            "expertise": [],
            "languages": ["en"],
            "conversion_rate": 10.0,
            "max_active_leads": 15,
            "current_active_leads": 0,
        }
        data.update(overrides)
        rep = SalesRepresentative(**data)
        db.add(rep)
        await db.commit()
        return rep

    return _make


@pytest.fixture
def failing_provider():
    return ProviderError("provider unavailable")
