"""
Breach monitor tests.

A Premium ticket (60 min response, Office Hours) created Monday 09:00 UTC is
due at 10:00; near breach is 85% (09:52 on), past breach 120% (10:12 on).
"""
import asyncio
from collections import Counter

import pytest
from sqlalchemy import update

from helpdesk_sla.infrastructure.database import get_session_context
from helpdesk_sla.sla.application import (
    BreachMonitorService,
    NotificationQueryDTO,
    NotificationService,
    SLAAssignmentService,
)
from helpdesk_sla.sla.infrastructure.models import SLADefinitionModel

from conftest import TENANT, load_ticket, make_ticket, utc


@pytest.fixture
def monitor(scope) -> BreachMonitorService:
    return BreachMonitorService(TENANT, scope)


@pytest.fixture
def notifications(scope) -> NotificationService:
    return NotificationService(TENANT, scope)


@pytest.fixture
async def premium_ticket(scope, catalog) -> int:
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])
    await SLAAssignmentService(TENANT, scope).apply(ticket_id)
    return ticket_id


async def all_notifications(service: NotificationService):
    _, items = await service.list_notifications(NotificationQueryDTO(limit=200))
    return items


async def test_thresholds_fire_in_order(monitor, notifications, premium_ticket):
    early = await monitor.run_tick(utc(2024, 1, 15, 9, 30))
    assert early["notifications_created"] == 0
    assert early["tickets_scanned"] == 1

    near = await monitor.run_tick(utc(2024, 1, 15, 9, 52))
    assert near["notifications_created"] == 1

    breached = await monitor.run_tick(utc(2024, 1, 15, 10, 0))
    assert breached["notifications_created"] == 1

    past = await monitor.run_tick(utc(2024, 1, 15, 10, 12))
    assert past["notifications_created"] == 1

    items = await all_notifications(notifications)
    assert [n.type for n in items] == [
        "SLA_RESPONSE_PAST",
        "SLA_RESPONSE_BREACHED",
        "SLA_RESPONSE_NEAR",
    ]
    assert [n.severity.value for n in items] == ["critical", "critical", "warning"]


async def test_repeated_tick_is_idempotent(monitor, notifications, premium_ticket):
    await monitor.run_tick(utc(2024, 1, 15, 10, 12))
    again = await monitor.run_tick(utc(2024, 1, 15, 10, 30))

    assert again["notifications_created"] == 0
    assert len(await all_notifications(notifications)) == 3


async def test_late_first_tick_records_every_crossing(monitor, premium_ticket):
    """A tick that first sees the ticket well past due emits all three at once."""
    summary = await monitor.run_tick(utc(2024, 1, 15, 11, 0))

    assert summary["notifications_created"] == 3
    row = await load_ticket(premium_ticket)
    assert row.notified_response_near_at == utc(2024, 1, 15, 11, 0)
    assert row.notified_response_breached_at == utc(2024, 1, 15, 11, 0)
    assert row.notified_response_past_at == utc(2024, 1, 15, 11, 0)


async def test_longer_target_after_breach_keeps_markers(scope, monitor, notifications, catalog, premium_ticket):
    """Relaxing the SLA after a breach neither re-notifies nor clears markers."""
    first = await monitor.run_tick(utc(2024, 1, 15, 11, 0))
    assert first["notifications_created"] == 3

    async with get_session_context(TENANT) as session:
        await session.execute(
            update(SLADefinitionModel)
            .where(SLADefinitionModel.id == catalog["premium"])
            .values(response_target_minutes=600)
        )
    ticket, _ = await SLAAssignmentService(TENANT, scope).apply(premium_ticket)
    assert ticket.response_due_at == utc(2024, 1, 16, 11, 0)

    again = await monitor.run_tick(utc(2024, 1, 15, 11, 30))

    assert again["notifications_created"] == 0
    assert len(await all_notifications(notifications)) == 3
    row = await load_ticket(premium_ticket)
    assert row.notified_response_near_at == utc(2024, 1, 15, 11, 0)
    assert row.notified_response_breached_at == utc(2024, 1, 15, 11, 0)
    assert row.notified_response_past_at == utc(2024, 1, 15, 11, 0)


async def test_markers_are_never_rewritten(monitor, premium_ticket):
    await monitor.run_tick(utc(2024, 1, 15, 9, 55))
    await monitor.run_tick(utc(2024, 1, 15, 10, 20))

    row = await load_ticket(premium_ticket)
    assert row.notified_response_near_at == utc(2024, 1, 15, 9, 55)
    assert row.notified_response_breached_at == utc(2024, 1, 15, 10, 20)


async def test_concurrent_ticks_do_not_duplicate(scope, notifications, premium_ticket):
    """Overlapping ticks record each crossing exactly once."""
    monitors = [BreachMonitorService(TENANT, scope) for _ in range(3)]
    now = utc(2024, 1, 15, 11, 0)

    summaries = await asyncio.gather(*(m.run_tick(now) for m in monitors))

    assert sum(s["notifications_created"] for s in summaries) == 3
    counts = Counter(n.type for n in await all_notifications(notifications))
    assert counts == {
        "SLA_RESPONSE_NEAR": 1,
        "SLA_RESPONSE_BREACHED": 1,
        "SLA_RESPONSE_PAST": 1,
    }


async def test_resolve_phase_after_response(scope, monitor, notifications, premium_ticket):
    await SLAAssignmentService(TENANT, scope).record_first_response(
        premium_ticket, utc(2024, 1, 15, 9, 20)
    )

    summary = await monitor.run_tick(utc(2024, 1, 15, 16, 15))

    assert summary["notifications_created"] == 1
    [notification] = await all_notifications(notifications)
    assert notification.type == "SLA_RESOLVE_NEAR"
    assert notification.payload["phase"] == "resolve"


async def test_closed_and_resolved_tickets_are_skipped(scope, monitor, catalog):
    assignment = SLAAssignmentService(TENANT, scope)
    closed = await make_ticket(sla_override_id=catalog["premium"], status="Closed")
    resolved = await make_ticket(
        sla_override_id=catalog["premium"], resolved_at=utc(2024, 1, 15, 9, 40)
    )
    unassigned = await make_ticket()
    for ticket_id in (closed, resolved):
        await assignment.apply(ticket_id)

    summary = await monitor.run_tick(utc(2024, 1, 16, 12, 0))

    assert summary["tickets_scanned"] == 0
    assert summary["notifications_created"] == 0
    assert (await load_ticket(unassigned)).notified_response_near_at is None


async def test_failing_ticket_does_not_stop_tick(monitor, notifications, catalog, premium_ticket):
    """A malformed profile is logged and counted; other tickets still run."""
    await make_ticket(
        sla_definition_id=catalog["misconfigured"],
        sla_source="ticket",
        response_due_at=utc(2024, 1, 15, 10, 0),
        resolve_due_at=utc(2024, 1, 15, 17, 0),
    )

    summary = await monitor.run_tick(utc(2024, 1, 15, 10, 12))

    assert summary["tickets_scanned"] == 2
    assert summary["errors"] == 1
    assert summary["notifications_created"] == 3
    assert {n.ticket_id for n in await all_notifications(notifications)} == {premium_ticket}


async def test_inconsistent_ticket_row_is_counted_as_error(monitor, notifications, catalog, premium_ticket):
    await make_ticket(
        sla_definition_id=catalog["premium"],
        sla_source="ticket",
        response_due_at=utc(2024, 1, 15, 10, 0),
        first_responded_at=utc(2024, 1, 15, 8, 0),
    )

    summary = await monitor.run_tick(utc(2024, 1, 15, 10, 12))

    assert summary["errors"] == 1
    assert summary["notifications_created"] == 3
    assert {n.ticket_id for n in await all_notifications(notifications)} == {premium_ticket}


async def test_notification_content(monitor, notifications, premium_ticket):
    await monitor.run_tick(utc(2024, 1, 15, 9, 52))

    [notification] = await all_notifications(notifications)
    assert notification.message == f"SLA response near breach for Ticket #{premium_ticket} (87%)"
    assert notification.payload == {
        "tenant": TENANT,
        "ticket_id": premium_ticket,
        "percent_used": 87,
        "due_at": "2024-01-15T10:00:00+00:00",
        "sla_name": "Premium",
        "phase": "response",
    }
    assert notification.created_at == utc(2024, 1, 15, 9, 52)
    assert notification.delivered_at is None


async def test_tick_summary_shape(monitor, engine):
    summary = await monitor.run_tick(utc(2024, 1, 15, 9, 0))

    assert summary["tenant"] == TENANT
    assert summary["tickets_scanned"] == 0
    assert summary["errors"] == 0
    assert summary["duration_ms"] >= 0
