"""
Test configuration and fixtures.

Provides:
- A file-backed sqlite+aiosqlite tenant database per test
- A seeded SLA catalog (business hours profiles and definitions)
- Ticket factory writing straight to the tickets table
- HTTPX AsyncClient bound to the FastAPI app
"""
import os
from datetime import datetime, time, timezone
from typing import AsyncGenerator, Dict

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SLA_SCHEDULER_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from helpdesk_sla.infrastructure.database import (
    Base,
    close_database,
    get_session_context,
    register_tenant,
)
from helpdesk_sla.sla.infrastructure import tenant_scope
from helpdesk_sla.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    SLADefinitionModel,
    TicketModel,
)

TENANT = "acme"

# Monday 15 January 2024, 09:00 UTC
MONDAY_9AM = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh tenant database registered under TENANT."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenant.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    register_tenant(TENANT, engine)
    yield engine
    await close_database()


@pytest.fixture
def scope(engine):
    """Repository scope for TENANT."""
    return tenant_scope(TENANT)


@pytest.fixture
async def catalog(engine) -> Dict[str, int]:
    """
    Seed two profiles and four SLA definitions.

    office: UTC, Mon-Fri 09:00-17:00
    Returns definition/profile ids by short name.
    """
    async with get_session_context(TENANT) as session:
        office = BusinessHoursProfileModel(
            name="Office Hours",
            timezone="UTC",
            days_of_week=[1, 2, 3, 4, 5],
            start_time=time(9, 0),
            end_time=time(17, 0),
        )
        broken = BusinessHoursProfileModel(
            name="Broken",
            timezone="Nowhere/Invalid",
            days_of_week=[1, 2, 3, 4, 5],
            start_time=time(9, 0),
            end_time=time(17, 0),
        )
        session.add_all([office, broken])
        await session.flush()

        standard = SLADefinitionModel(
            name="Standard", business_hours_profile_id=office.id,
            response_target_minutes=240, resolve_target_minutes=2880, is_default=True,
        )
        premium = SLADefinitionModel(
            name="Premium", business_hours_profile_id=office.id,
            response_target_minutes=60, resolve_target_minutes=480,
        )
        critical = SLADefinitionModel(
            name="Critical", business_hours_profile_id=None,
            response_target_minutes=15, resolve_target_minutes=120,
        )
        after_response = SLADefinitionModel(
            name="Follow Up", business_hours_profile_id=office.id,
            response_target_minutes=60, resolve_target_minutes=480,
            resolve_after_response_minutes=120,
        )
        misconfigured = SLADefinitionModel(
            name="Misconfigured", business_hours_profile_id=broken.id,
            response_target_minutes=60, resolve_target_minutes=480,
        )
        session.add_all([standard, premium, critical, after_response, misconfigured])
        await session.flush()

        return {
            "office": office.id,
            "broken": broken.id,
            "standard": standard.id,
            "premium": premium.id,
            "critical": critical.id,
            "after_response": after_response.id,
            "misconfigured": misconfigured.id,
        }


async def make_ticket(**fields) -> int:
    """Insert a ticket row for TENANT and return its id."""
    fields.setdefault("title", "Printer on fire")
    fields.setdefault("status", "Open")
    fields.setdefault("created_at", MONDAY_9AM)
    async with get_session_context(TENANT) as session:
        ticket = TicketModel(**fields)
        session.add(ticket)
        await session.flush()
        return ticket.id


async def load_ticket(ticket_id: int) -> TicketModel:
    async with get_session_context(TENANT) as session:
        return await session.get(TicketModel, ticket_id)


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app; the lifespan is not run."""
    from helpdesk_sla.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
