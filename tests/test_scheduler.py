"""
Scheduler, bounded tenant ticks and Slack delivery tests.
"""
import asyncio
import json

import httpx
import pytest

from helpdesk_sla.sla.application import (
    BreachMonitorService,
    NotificationQueryDTO,
    NotificationService,
    SLAAssignmentService,
)
from helpdesk_sla.sla.infrastructure import (
    SLAScheduler,
    SlackClient,
    SlackNotificationDispatcher,
    run_tenant_tick,
)

from conftest import TENANT, make_ticket, utc

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXXX"


class SlowMonitor:
    """Stands in for a tenant whose tick hangs."""

    tenant = "slowco"

    async def run_tick(self):
        await asyncio.sleep(5)


class BrokenMonitor:
    tenant = "brokenco"

    async def run_tick(self):
        raise RuntimeError("database went away")


@pytest.fixture
async def pending(scope, catalog) -> NotificationService:
    """Three undelivered notifications for one breached Premium ticket."""
    ticket_id = await make_ticket(sla_override_id=catalog["premium"])
    await SLAAssignmentService(TENANT, scope).apply(ticket_id)
    await BreachMonitorService(TENANT, scope).run_tick(utc(2024, 1, 15, 11, 0))
    return NotificationService(TENANT, scope)


def slack_client(handler) -> SlackClient:
    return SlackClient(
        webhook_url=WEBHOOK,
        channel="#sla-test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_base_delay=0,
    )


# =============================================================================
# Scheduler
# =============================================================================

async def test_one_job_per_tenant(scope):
    scheduler = SLAScheduler(interval_seconds=60, tenant_timeout_seconds=5)
    monitors = {
        "acme": BreachMonitorService("acme", scope),
        "globex": BreachMonitorService("globex", scope),
    }

    await scheduler.start(monitors)
    try:
        assert scheduler.is_running
        assert sorted(scheduler.job_ids) == ["sla_monitor:acme", "sla_monitor:globex"]
    finally:
        await scheduler.stop()

    assert not scheduler.is_running


async def test_stop_without_start_is_noop():
    scheduler = SLAScheduler()
    await scheduler.stop()
    assert scheduler.job_ids == []


# =============================================================================
# run_tenant_tick
# =============================================================================

async def test_tick_timeout_is_contained():
    assert await run_tenant_tick(SlowMonitor(), timeout_seconds=0.05) is None


async def test_tick_failure_is_contained():
    assert await run_tenant_tick(BrokenMonitor(), timeout_seconds=1) is None


async def test_tick_summary_includes_drain(scope, pending):
    client = slack_client(lambda request: httpx.Response(200, text="ok"))
    dispatcher = SlackNotificationDispatcher(TENANT, pending, client)

    summary = await run_tenant_tick(BreachMonitorService(TENANT, scope), 10, dispatcher)

    assert summary["tenant"] == TENANT
    assert summary["drain"] == {"pending": 3, "sent": 3, "failed": 0}
    await client.close()


# =============================================================================
# Slack delivery
# =============================================================================

async def test_drain_marks_sent_notifications_delivered(pending):
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    client = slack_client(handler)
    result = await SlackNotificationDispatcher(TENANT, pending, client).drain()
    await client.close()

    assert result == {"pending": 3, "sent": 3, "failed": 0}
    assert posted[0]["channel"] == "#sla-test"
    assert posted[0]["text"].startswith("SLA response near breach for Ticket #")
    assert posted[0]["blocks"][0]["text"]["text"] == ":warning: SLA Warning"
    total, _ = await pending.list_notifications(NotificationQueryDTO(delivered=False))
    assert total == 0


async def test_failed_sends_stay_undelivered(pending):
    client = slack_client(lambda request: httpx.Response(500))

    result = await SlackNotificationDispatcher(TENANT, pending, client).drain()
    await client.close()

    assert result == {"pending": 3, "sent": 0, "failed": 3}
    total, _ = await pending.list_notifications(NotificationQueryDTO(delivered=False))
    assert total == 3


async def test_open_circuit_stops_drain(pending):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = slack_client(handler)
    client.circuit_breaker.failure_threshold = 1

    result = await SlackNotificationDispatcher(TENANT, pending, client).drain()
    await client.close()

    assert result == {"pending": 3, "sent": 0, "failed": 1}


async def test_unconfigured_client_sends_nothing(pending):
    client = SlackClient(webhook_url="")

    assert not client.is_configured
    result = await SlackNotificationDispatcher(TENANT, pending, client).drain()

    assert result["sent"] == 0
