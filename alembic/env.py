"""Alembic env.py: async PostgreSQL migrations for the lead pipeline."""

import asyncio
import sys
import os

# Add project root to path so 'app' module is importable when running alembic
# from any working directory
_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from app.core.config import settings
from app.core.database import Base
from app.models.customer import Customer, Purchase, CustomerTouchpoint  # noqa: F401
from app.models.vehicle import Vehicle  # noqa: F401
from app.models.inquiry import Inquiry  # noqa: F401
from app.models.lead_score import LeadScore  # noqa: F401
from app.models.sales_rep import SalesRepresentative  # noqa: F401
from app.models.lead_assignment import LeadAssignment, WaitQueueEntry, FollowUpTask  # noqa: F401
from app.models.campaign import Segment, SegmentMembership, EmailCampaign, SmsCampaign  # noqa: F401
from app.models.delivery_log import EmailLog, SmsLog  # noqa: F401
from app.models.job import Job  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    url = settings.DATABASE_URL
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(settings.DATABASE_URL, poolclass=pool.NullPool)
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
