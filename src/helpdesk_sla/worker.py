"""
SLA Worker
==========

Standalone breach monitor for deployments that set
SLA_SCHEDULER_ENABLED=false on the API processes.

Usage:
    python -m helpdesk_sla.worker              # one tick per tenant, then exit
    python -m helpdesk_sla.worker --daemon     # tick every interval until stopped
    python -m helpdesk_sla.worker --tenant acme --tenant globex
"""

import argparse
import asyncio
import signal
import sys
from typing import Dict, List, Optional, Sequence

from helpdesk_sla.config import settings
from helpdesk_sla.infrastructure.database import close_database, get_tenant_codes, init_database
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency, setup_logging
from helpdesk_sla.sla.application import BreachMonitorService, NotificationService
from helpdesk_sla.sla.infrastructure import (
    SLAScheduler,
    SlackClient,
    SlackNotificationDispatcher,
    run_tenant_tick,
    tenant_scope,
)

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="helpdesk_sla.worker",
        description="Evaluate SLA thresholds and record breach notifications."
    )
    parser.add_argument(
        "--daemon",
        action="store_true",
        help="Keep running and tick every interval"
    )
    parser.add_argument(
        "--tenant",
        action="append",
        dest="tenants",
        metavar="CODE",
        help="Limit to this tenant (repeatable); defaults to all configured tenants"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.sla_evaluation_interval_seconds,
        help="Seconds between ticks in daemon mode (default: %(default)s)"
    )
    return parser.parse_args(argv)


def build_monitors(tenants: List[str]) -> Dict[str, BreachMonitorService]:
    return {tenant: BreachMonitorService(tenant, tenant_scope(tenant)) for tenant in tenants}


def build_dispatchers(
    tenants: List[str],
    slack_client: SlackClient,
) -> Dict[str, SlackNotificationDispatcher]:
    if not (settings.notification_drain_enabled and slack_client.is_configured):
        return {}
    return {
        tenant: SlackNotificationDispatcher(
            tenant, NotificationService(tenant, tenant_scope(tenant)), slack_client
        )
        for tenant in tenants
    }


async def run_once(tenants: List[str], slack_client: SlackClient) -> int:
    """
    One bounded tick per tenant.

    Returns:
        Number of tenants whose tick failed or timed out
    """
    monitors = build_monitors(tenants)
    dispatchers = build_dispatchers(tenants, slack_client)
    failures = 0

    with log_latency(logger, "sla_worker_run", tenants=tenants):
        for tenant, monitor in monitors.items():
            summary = await run_tenant_tick(
                monitor, settings.sla_tenant_timeout_seconds, dispatchers.get(tenant)
            )
            if summary is None:
                failures += 1

    return failures


async def run_daemon(tenants: List[str], slack_client: SlackClient, interval: int) -> None:
    """Run the scheduler until SIGINT or SIGTERM."""
    scheduler = SLAScheduler(
        interval_seconds=interval,
        tenant_timeout_seconds=settings.sla_tenant_timeout_seconds,
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    # First tick immediately, then on the interval
    await run_once(tenants, slack_client)
    await scheduler.start(build_monitors(tenants), build_dispatchers(tenants, slack_client))
    try:
        await stop.wait()
    finally:
        await scheduler.stop()


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(settings.log_level, settings.environment)

    init_database()
    tenants = args.tenants or get_tenant_codes()
    unknown = sorted(set(tenants) - set(get_tenant_codes()))
    if unknown:
        logger.error("Unknown tenants", extra={"tenants": unknown})
        await close_database()
        return 2

    logger.info(
        "SLA worker starting",
        extra={"tenants": tenants, "daemon": args.daemon, "interval_seconds": args.interval}
    )

    slack_client = SlackClient()
    try:
        if args.daemon:
            await run_daemon(tenants, slack_client, args.interval)
            return 0
        failures = await run_once(tenants, slack_client)
        return 1 if failures else 0
    finally:
        await slack_client.close()
        await close_database()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
