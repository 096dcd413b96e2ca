"""
SLA configuration lookups, assignment and seeding against a tenant database.
"""
import pytest
from sqlalchemy import select, update

from helpdesk_sla.config import SLASource
from helpdesk_sla.core import ConfigurationError, NotFoundError, ProfileError, ValidationException
from helpdesk_sla.infrastructure.database import get_session_context
from helpdesk_sla.sla.application import SLAAssignmentService
from helpdesk_sla.sla.infrastructure import YAMLSeedLoader
from helpdesk_sla.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    CategorySLAMappingModel,
    CMDBItemModel,
    CustomerCompanyModel,
    CustomerModel,
    SLADefinitionModel,
    TicketModel,
)

from conftest import TENANT, load_ticket, make_ticket, utc


@pytest.fixture
def service(scope) -> SLAAssignmentService:
    return SLAAssignmentService(TENANT, scope)


async def add(*models) -> None:
    async with get_session_context(TENANT) as session:
        session.add_all(models)


# =============================================================================
# Resolution layers
# =============================================================================

async def test_tenant_default_fallback(service, catalog):
    ticket_id = await make_ticket()

    ticket, resolved = await service.apply(ticket_id)

    assert resolved.definition.id == catalog["standard"]
    assert resolved.source == SLASource.DEFAULT
    assert ticket.response_due_at == utc(2024, 1, 15, 13, 0)


async def test_ticket_override(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])

    _, resolved = await service.apply(ticket_id)

    assert resolved.definition.name == "Premium"
    assert resolved.source == SLASource.TICKET


async def test_user_override_beats_company(service, catalog):
    await add(CustomerCompanyModel(id=1, name="Initech", sla_definition_id=catalog["standard"]))
    await add(CustomerModel(user_id=7, customer_company_id=1, sla_override_id=catalog["critical"]))
    ticket_id = await make_ticket(requester_id=7)

    _, resolved = await service.apply(ticket_id)

    assert resolved.definition.name == "Critical"
    assert resolved.source == SLASource.CUSTOMER
    assert resolved.rule == "user_override"


async def test_company_sla_level_partial_name(service, catalog):
    """A legacy sla_level like 'premium' matches 'Premium' case-insensitively."""
    await add(CustomerCompanyModel(id=1, name="Initech", sla_level="  premium "))
    await add(CustomerModel(user_id=7, customer_company_id=1))
    ticket_id = await make_ticket(requester_id=7)

    _, resolved = await service.apply(ticket_id)

    assert resolved.definition.name == "Premium"
    assert resolved.rule == "company_default"


async def test_company_sla_level_prefers_exact_match(scope, catalog):
    await add(SLADefinitionModel(
        name="Premium Plus", response_target_minutes=30, resolve_target_minutes=240,
    ))
    async with scope() as repos:
        assert (await repos.config.find_by_name("premium plus")).name == "Premium Plus"
        assert (await repos.config.find_by_name("PREMIUM")).name == "Premium"
        assert (await repos.config.find_by_name("prem")).name == "Premium"
        assert await repos.config.find_by_name("gold") is None


async def test_category_mapping_trimmed_and_lowercased(service, catalog):
    await add(CategorySLAMappingModel(category="network", sla_definition_id=catalog["critical"]))
    ticket_id = await make_ticket(category="  Network ")

    _, resolved = await service.apply(ticket_id)

    assert resolved.definition.name == "Critical"
    assert resolved.source == SLASource.CATEGORY


async def test_customer_beats_category(service, catalog):
    await add(CategorySLAMappingModel(category="network", sla_definition_id=catalog["critical"]))
    await add(CustomerModel(user_id=7, sla_override_id=catalog["premium"]))
    ticket_id = await make_ticket(requester_id=7, category="network")

    _, resolved = await service.apply(ticket_id)

    assert resolved.source == SLASource.CUSTOMER


async def test_inactive_category_mapping_ignored(service, catalog):
    await add(CategorySLAMappingModel(
        category="network", sla_definition_id=catalog["critical"], is_active=False,
    ))
    ticket_id = await make_ticket(category="network")

    _, resolved = await service.apply(ticket_id)

    assert resolved.source == SLASource.DEFAULT


async def test_cmdb_item(service, catalog):
    await add(CMDBItemModel(id=3, name="core-switch-01", sla_definition_id=catalog["premium"]))
    ticket_id = await make_ticket(cmdb_item_id=3)

    _, resolved = await service.apply(ticket_id)

    assert resolved.source == SLASource.CMDB


async def test_no_active_default_raises(service, engine):
    await add(SLADefinitionModel(
        name="Retired", response_target_minutes=60, resolve_target_minutes=480, is_active=False,
    ))
    ticket_id = await make_ticket()

    with pytest.raises(ConfigurationError):
        await service.apply(ticket_id)


async def test_unknown_ticket(service, catalog):
    with pytest.raises(NotFoundError):
        await service.apply(999)


async def test_broken_profile_raises(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["misconfigured"])

    with pytest.raises(ProfileError):
        await service.apply(ticket_id)

    row = await load_ticket(ticket_id)
    assert row.sla_definition_id is None


async def test_reapply_keeps_markers(service, catalog):
    """Recomputing deadlines never clears threshold markers."""
    marked = utc(2024, 1, 15, 9, 52)
    ticket_id = await make_ticket(notified_response_near_at=marked)

    await service.apply(ticket_id)

    row = await load_ticket(ticket_id)
    assert row.notified_response_near_at == marked
    assert row.sla_source == "default"


async def test_reapply_same_source_keeps_deadlines(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])
    first, _ = await service.apply(ticket_id)

    again, resolved = await service.apply(ticket_id)

    assert resolved.definition.id == catalog["premium"]
    assert again.response_due_at == first.response_due_at == utc(2024, 1, 15, 10, 0)
    assert again.resolve_due_at == first.resolve_due_at == utc(2024, 1, 15, 17, 0)


async def test_switch_to_longer_sla_never_moves_deadlines_earlier(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])
    before, _ = await service.apply(ticket_id)

    async with get_session_context(TENANT) as session:
        await session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(sla_override_id=catalog["standard"])
        )
    after, resolved = await service.apply(ticket_id)

    assert resolved.definition.id == catalog["standard"]
    assert after.response_due_at >= before.response_due_at
    assert after.resolve_due_at >= before.resolve_due_at
    assert after.response_due_at == utc(2024, 1, 15, 13, 0)


async def test_inactive_profile_raises(service, catalog):
    async with get_session_context(TENANT) as session:
        await session.execute(
            update(BusinessHoursProfileModel)
            .where(BusinessHoursProfileModel.id == catalog["office"])
            .values(is_active=False)
        )
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])

    with pytest.raises(ProfileError) as exc_info:
        await service.apply(ticket_id)

    assert exc_info.value.profile_id == catalog["office"]
    row = await load_ticket(ticket_id)
    assert row.sla_definition_id is None


async def test_inconsistent_ticket_row_is_validation_error(service, catalog):
    ticket_id = await make_ticket(first_responded_at=utc(2024, 1, 15, 8, 0))

    with pytest.raises(ValidationException) as exc_info:
        await service.apply(ticket_id)

    assert exc_info.value.details == {"ticket_id": ticket_id}


# =============================================================================
# First response
# =============================================================================

async def test_first_response_anchors_resolve_deadline(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["after_response"])
    ticket, _ = await service.apply(ticket_id)
    assert ticket.resolve_due_at is None

    ticket = await service.record_first_response(ticket_id, utc(2024, 1, 15, 16, 0))

    assert ticket.resolve_due_at == utc(2024, 1, 16, 10, 0)
    row = await load_ticket(ticket_id)
    assert row.resolve_due_at == utc(2024, 1, 16, 10, 0)
    assert row.sla_source == "ticket"


async def test_first_response_recorded_once(service, catalog):
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])
    await service.apply(ticket_id)

    await service.record_first_response(ticket_id, utc(2024, 1, 15, 9, 30))
    ticket = await service.record_first_response(ticket_id, utc(2024, 1, 15, 11, 0))

    assert ticket.first_responded_at == utc(2024, 1, 15, 9, 30)


async def test_first_response_before_creation_rejected(service, catalog):
    ticket_id = await make_ticket()

    with pytest.raises(ValidationException):
        await service.record_first_response(ticket_id, utc(2024, 1, 15, 8, 0))


# =============================================================================
# Seed catalog
# =============================================================================

SEED_YAML = """
business_hours_profiles:
  - name: Standard Business Hours
    timezone: Australia/Sydney
    days_of_week: [1, 2, 3, 4, 5]
    start_time: "09:00"
    end_time: 17:00
  - name: 24x7 Support
    timezone: UTC
    days_of_week: [1, 2, 3, 4, 5, 6, 7]
    is_24x7: true

sla_definitions:
  - name: Basic SLA
    profile: Standard Business Hours
    response_target_minutes: 240
    resolve_target_minutes: 2880
    is_default: true
  - name: Critical SLA
    profile: 24x7 Support
    response_target_minutes: 15
    resolve_target_minutes: 120
"""


async def test_seed_inserts_missing_rows_once(engine, tmp_path):
    seed_path = tmp_path / "seed.yaml"
    seed_path.write_text(SEED_YAML)
    loader = YAMLSeedLoader(seed_path)

    async with get_session_context(TENANT) as session:
        assert await loader.seed(session) == {"business_hours_profiles": 2, "sla_definitions": 2}
    async with get_session_context(TENANT) as session:
        assert await loader.seed(session) == {"business_hours_profiles": 0, "sla_definitions": 0}

    async with get_session_context(TENANT) as session:
        result = await session.execute(
            select(BusinessHoursProfileModel).where(BusinessHoursProfileModel.name == "Standard Business Hours")
        )
        profile = result.scalar_one()
    # Unquoted 17:00 is read by YAML as sexagesimal minutes
    assert profile.end_time.hour == 17
    assert profile.start_time.hour == 9


async def test_seed_unknown_profile(engine, tmp_path):
    seed_path = tmp_path / "seed.yaml"
    seed_path.write_text(
        "sla_definitions:\n"
        "  - name: Orphan\n"
        "    profile: Nope\n"
        "    response_target_minutes: 10\n"
        "    resolve_target_minutes: 20\n"
    )

    with pytest.raises(ConfigurationError):
        async with get_session_context(TENANT) as session:
            await YAMLSeedLoader(seed_path).seed(session)


def test_missing_seed_file_is_empty(tmp_path):
    catalog = YAMLSeedLoader(tmp_path / "absent.yaml").load()
    assert catalog.business_hours_profiles == []
    assert catalog.sla_definitions == []
