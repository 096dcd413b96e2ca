"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- APScheduler for the recurring per-tenant breach monitor tick
- Slack webhook delivery of undelivered notifications
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from helpdesk_sla.config import Severity, settings
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.services import BreachMonitorService, NotificationService
from helpdesk_sla.sla.domain import Notification

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class SlackMessage:
    """Slack rendering of one SLA notification."""
    tenant: str
    notification_id: int
    ticket_id: int
    type: str
    severity: str
    text: str
    created_at: str

    @classmethod
    def from_notification(cls, tenant: str, notification: Notification) -> "SlackMessage":
        return cls(
            tenant=tenant,
            notification_id=notification.id,
            ticket_id=notification.ticket_id,
            type=notification.type,
            severity=Severity(notification.severity).value,
            text=notification.message,
            created_at=notification.created_at.isoformat() if notification.created_at else "",
        )


class SlackClient:
    """
    Slack webhook client with circuit breaker and retry logic.

    Handles sending notifications to Slack with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_base_delay: float = 1.0,
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, data: SlackMessage) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        if data.severity == Severity.CRITICAL.value:
            header_text = ":rotating_light: SLA Breach"
        else:
            header_text = ":warning: SLA Warning"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header_text, "emoji": True}
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": data.text}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Tenant:*\n{data.tenant}"},
                    {"type": "mrkdwn", "text": f"*Ticket:*\n#{data.ticket_id}"},
                    {"type": "mrkdwn", "text": f"*Type:*\n{data.type}"},
                    {"type": "mrkdwn", "text": f"*Severity:*\n{data.severity.title()}"},
                ]
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Raised: {data.created_at}"}
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": data.text,
            "blocks": blocks
        }

    async def send(self, data: SlackMessage, max_retries: int = 3) -> bool:
        """
        Post a message to the Slack webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"notification_id": data.notification_id}
            )
            return False

        message = self._build_message(data)

        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={
                            "notification_id": data.notification_id,
                            "ticket_id": data.ticket_id,
                            "notification_type": data.type
                        }
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "notification_id": data.notification_id
                    }
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SlackNotificationDispatcher:
    """
    Drains a tenant's undelivered notifications to Slack.

    Only notifications Slack accepted are marked delivered; the rest stay
    undelivered for the next drain. Ticket markers are never touched.
    """

    def __init__(
        self,
        tenant: str,
        notification_service: NotificationService,
        slack_client: SlackClient,
        batch_size: int = 50,
    ):
        self._tenant = tenant
        self._notifications = notification_service
        self._slack = slack_client
        self._batch_size = batch_size

    async def drain(self) -> Dict[str, int]:
        pending = await self._notifications.list_undelivered(self._batch_size)
        sent = 0
        failed = 0

        for notification in pending:
            if await self._slack.send(SlackMessage.from_notification(self._tenant, notification)):
                await self._notifications.mark_delivered(notification.id)
                sent += 1
            else:
                failed += 1
                if not self._slack.circuit_breaker.allow_request():
                    break

        summary = {"pending": len(pending), "sent": sent, "failed": failed}
        if pending:
            logger.info("Notification drain complete", extra={"tenant": self._tenant, **summary})
        return summary


async def run_tenant_tick(
    monitor: BreachMonitorService,
    timeout_seconds: float,
    dispatcher: Optional[SlackNotificationDispatcher] = None,
) -> Optional[Dict[str, Any]]:
    """
    One bounded tick for one tenant.

    Timeouts and failures are logged and reported as None; they never
    propagate to the caller, so one tenant cannot stall or break another.
    """
    try:
        summary = await asyncio.wait_for(monitor.run_tick(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(
            "SLA tick timed out",
            extra={"tenant": monitor.tenant, "timeout_seconds": timeout_seconds}
        )
        return None
    except Exception as e:
        logger.error(
            f"SLA tick failed: {e}",
            extra={"tenant": monitor.tenant},
            exc_info=True
        )
        return None

    if dispatcher is not None:
        try:
            summary["drain"] = await dispatcher.drain()
        except Exception as e:
            logger.error(
                f"Notification drain failed: {e}",
                extra={"tenant": monitor.tenant},
                exc_info=True
            )
    return summary


class SLAScheduler:
    """
    Wrapper for APScheduler running the breach monitor.

    One interval job per tenant. max_instances=1 with coalesce keeps each
    tenant single-flight: an overrunning tick delays the next one instead
    of overlapping it, and missed runs collapse into one.
    """

    def __init__(
        self,
        interval_seconds: int = 300,
        tenant_timeout_seconds: float = 60.0,
    ):
        self.interval_seconds = interval_seconds
        self.tenant_timeout_seconds = tenant_timeout_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        monitors: Mapping[str, BreachMonitorService],
        dispatchers: Optional[Mapping[str, SlackNotificationDispatcher]] = None,
    ) -> None:
        """Start one job per tenant monitor."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        dispatchers = dispatchers or {}
        self._scheduler = AsyncIOScheduler()

        for tenant, monitor in monitors.items():
            self._scheduler.add_job(
                run_tenant_tick,
                "interval",
                seconds=self.interval_seconds,
                args=[monitor, self.tenant_timeout_seconds, dispatchers.get(tenant)],
                id=f"sla_monitor:{tenant}",
                name=f"SLA breach monitor ({tenant})",
                misfire_grace_time=self.interval_seconds,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds, "tenants": sorted(monitors)}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_ids(self) -> list:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
