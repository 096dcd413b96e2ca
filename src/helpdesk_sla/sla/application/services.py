"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Every service receives a repository scope: a factory returning an async
context manager that yields the repositories bound to one tenant
transaction. Leaving the scope commits; an exception rolls back.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from helpdesk_sla.config import MAX_BULK_DELIVERED, ThresholdLevel
from helpdesk_sla.core import ConfigurationError, NotFoundError, ValidationException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.dto import NotificationQueryDTO
from helpdesk_sla.sla.domain import (
    BreachEvaluator,
    DeadlineEngine,
    Deadlines,
    Notification,
    PhaseEvaluation,
    ResolvedSLA,
    SLAContext,
    SLADefinition,
    SLAReport,
    SLAResolver,
    ThresholdKind,
    Ticket,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAConfigRepository(ABC):
    """Interface for SLA configuration lookups."""

    @abstractmethod
    async def get_definition(self, definition_id: int) -> Optional[SLADefinition]:
        """Get a definition by id, active or not."""

    @abstractmethod
    async def load_context(self, ticket: Ticket) -> SLAContext:
        """Load the candidate definition of every override layer for a ticket."""


class ITicketSLARepository(ABC):
    """Interface for the SLA columns of the ticket table."""

    @abstractmethod
    async def get(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def list_monitorable_ids(self) -> List[int]:
        """Ids of open tickets with a resolved SLA and at least one deadline."""

    @abstractmethod
    async def save_resolution(
        self,
        ticket_id: int,
        resolved: ResolvedSLA,
        deadlines: Deadlines,
    ) -> None:
        """Persist SLA source and deadlines. Never touches threshold markers."""

    @abstractmethod
    async def record_first_response(self, ticket_id: int, responded_at: datetime) -> bool:
        """Set first_responded_at if still unset. Returns True if it was set."""

    @abstractmethod
    async def set_marker_if_null(
        self,
        ticket_id: int,
        kind: ThresholdKind,
        at: datetime,
    ) -> bool:
        """Conditionally set a threshold marker. Returns True if this call set it."""


class INotificationRepository(ABC):
    """Interface for the notification log."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Append a notification."""

    @abstractmethod
    async def get(self, notification_id: int) -> Optional[Notification]:
        """Get notification by id."""

    @abstractmethod
    async def mark_delivered(self, notification_id: int, at: datetime) -> Optional[Notification]:
        """Set delivered_at if unset. Returns the row, or None if unknown."""

    @abstractmethod
    async def bulk_mark_delivered(self, notification_ids: Sequence[int], at: datetime) -> int:
        """Set delivered_at on undelivered rows among ids. Returns rows changed."""

    @abstractmethod
    async def query(self, filters: NotificationQueryDTO) -> Tuple[int, List[Notification]]:
        """Total matching rows and one page of them, newest first."""

    @abstractmethod
    async def list_undelivered(self, limit: int) -> List[Notification]:
        """Oldest undelivered notifications first."""


@dataclass
class SLARepositories:
    """Repositories sharing one transaction."""

    config: ISLAConfigRepository
    tickets: ITicketSLARepository
    notifications: INotificationRepository


RepositoryScope = Callable[[], AbstractAsyncContextManager[SLARepositories]]


# ========== Application Services ==========

class SLAAssignmentService:
    """
    Resolves a ticket's SLA and keeps its deadlines current.

    Called on ticket creation, whenever the SLA-relevant linkage of a ticket
    changes (including changes made by the rule engine) and on first response.
    """

    def __init__(
        self,
        tenant: str,
        scope: RepositoryScope,
        resolver: Optional[SLAResolver] = None,
        deadline_engine: Optional[DeadlineEngine] = None,
    ):
        self._tenant = tenant
        self._scope = scope
        self._resolver = resolver or SLAResolver()
        self._deadline_engine = deadline_engine or DeadlineEngine()

    async def apply(self, ticket_id: int) -> Tuple[Ticket, ResolvedSLA]:
        """
        Resolve the effective SLA for a ticket and persist its deadlines.

        Raises:
            NotFoundError: unknown ticket
            ConfigurationError: no layer resolves
            ProfileError: the winning definition's profile is malformed
        """
        async with self._scope() as repos:
            ticket = await self._get_ticket(repos, ticket_id)
            context = await repos.config.load_context(ticket)
            resolved = self._resolver.resolve(ticket, context)
            deadlines = self._deadline_engine.compute_deadlines(ticket, resolved.definition)
            await repos.tickets.save_resolution(ticket.id, resolved, deadlines)

        self._update_ticket(ticket, resolved, deadlines)
        logger.info(
            "SLA applied",
            extra={
                "tenant": self._tenant,
                "ticket_id": ticket.id,
                "sla_definition_id": resolved.definition.id,
                "sla_source": resolved.source.value,
                "rule": resolved.rule,
                "response_due_at": deadlines.response_due_at.isoformat(),
                "resolve_due_at": deadlines.resolve_due_at.isoformat() if deadlines.resolve_due_at else None,
            },
        )
        return ticket, resolved

    async def record_first_response(
        self,
        ticket_id: int,
        responded_at: Optional[datetime] = None,
    ) -> Ticket:
        """
        Record the first agent response once; later calls leave it unchanged.

        For SLAs that measure resolution from first response, the resolve
        deadline is anchored here.
        """
        responded_at = responded_at or utcnow()
        if responded_at.tzinfo is None:
            responded_at = responded_at.replace(tzinfo=timezone.utc)

        async with self._scope() as repos:
            ticket = await self._get_ticket(repos, ticket_id)
            if ticket.first_responded_at is not None:
                return ticket
            if responded_at < ticket.created_at:
                raise ValidationException(
                    "First response cannot precede ticket creation",
                    {"ticket_id": ticket_id, "responded_at": responded_at.isoformat()},
                )

            if not await repos.tickets.record_first_response(ticket.id, responded_at):
                # Recorded concurrently by another caller
                return await self._get_ticket(repos, ticket_id)
            ticket.first_responded_at = responded_at

            if ticket.sla_definition_id is None or ticket.sla_source is None:
                return ticket

            definition = await repos.config.get_definition(ticket.sla_definition_id)
            if definition is None or not definition.resolves_after_response:
                return ticket

            resolved = ResolvedSLA(definition=definition, source=ticket.sla_source, rule="first_response")
            deadlines = self._deadline_engine.compute_deadlines(ticket, definition)
            await repos.tickets.save_resolution(ticket.id, resolved, deadlines)

        self._update_ticket(ticket, resolved, deadlines)
        logger.info(
            "Resolve deadline anchored at first response",
            extra={
                "tenant": self._tenant,
                "ticket_id": ticket.id,
                "resolve_due_at": deadlines.resolve_due_at.isoformat(),
            },
        )
        return ticket

    async def get_status(
        self,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Ticket, Optional[SLADefinition], SLAReport]:
        """Current SLA status of a ticket."""
        now = now or utcnow()
        async with self._scope() as repos:
            ticket = await self._get_ticket(repos, ticket_id)
            definition = None
            if ticket.sla_definition_id is not None:
                definition = await repos.config.get_definition(ticket.sla_definition_id)

        return ticket, definition, BreachEvaluator.report(ticket, definition, now)

    @staticmethod
    async def _get_ticket(repos: SLARepositories, ticket_id: int) -> Ticket:
        ticket = await repos.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    @staticmethod
    def _update_ticket(ticket: Ticket, resolved: ResolvedSLA, deadlines: Deadlines) -> None:
        ticket.sla_definition_id = resolved.definition.id
        ticket.sla_source = resolved.source
        ticket.response_due_at = deadlines.response_due_at
        ticket.resolve_due_at = deadlines.resolve_due_at


_LEVEL_LABELS = {
    ThresholdLevel.NEAR: "near breach",
    ThresholdLevel.BREACHED: "breached",
    ThresholdLevel.PAST: "past breach",
}


class BreachMonitorService:
    """
    Scans a tenant's open tickets and records each threshold crossing once.

    Each ticket is evaluated in its own transaction. A crossing is recorded
    by a conditional marker update; the notification is only inserted when
    that update changed a row, so overlapping or repeated ticks never
    produce duplicates. A failing ticket is logged and skipped; the next
    tick retries it.
    """

    def __init__(
        self,
        tenant: str,
        scope: RepositoryScope,
        evaluator: type[BreachEvaluator] = BreachEvaluator,
    ):
        self._tenant = tenant
        self._scope = scope
        self._evaluator = evaluator

    @property
    def tenant(self) -> str:
        return self._tenant

    async def run_tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Evaluate every monitorable ticket once.

        Returns:
            Summary with tickets_scanned, notifications_created, errors
        """
        now = now or utcnow()
        start = perf_counter()

        async with self._scope() as repos:
            ticket_ids = await repos.tickets.list_monitorable_ids()

        created = 0
        errors = 0
        for ticket_id in ticket_ids:
            try:
                created += await self._evaluate_ticket(ticket_id, now)
            except Exception as e:
                errors += 1
                logger.error(
                    f"SLA evaluation failed for ticket {ticket_id}: {e}",
                    extra={"tenant": self._tenant, "ticket_id": ticket_id},
                    exc_info=True,
                )

        summary = {
            "tenant": self._tenant,
            "tickets_scanned": len(ticket_ids),
            "notifications_created": created,
            "errors": errors,
            "duration_ms": round((perf_counter() - start) * 1000, 2),
        }
        logger.info("SLA tick complete", extra=summary)
        return summary

    async def _evaluate_ticket(self, ticket_id: int, now: datetime) -> int:
        async with self._scope() as repos:
            ticket = await repos.tickets.get(ticket_id)
            if ticket is None or not ticket.is_open or ticket.sla_definition_id is None:
                return 0

            definition = await repos.config.get_definition(ticket.sla_definition_id)
            if definition is None:
                raise ConfigurationError(
                    f"Ticket {ticket_id} references missing SLA definition {ticket.sla_definition_id}",
                    {"ticket_id": ticket_id},
                )

            created = 0
            for evaluation in self._evaluator.running_phases(ticket, definition, now):
                for kind in evaluation.crossed:
                    if ticket.is_notified(kind):
                        continue
                    if not await repos.tickets.set_marker_if_null(ticket.id, kind, now):
                        continue

                    await repos.notifications.create(
                        self._build_notification(ticket, definition, evaluation, kind, now)
                    )
                    ticket.markers[kind] = now
                    created += 1
                    logger.info(
                        "SLA threshold crossed",
                        extra={
                            "tenant": self._tenant,
                            "ticket_id": ticket.id,
                            "notification_type": kind.notification_type,
                            "percent_used": evaluation.percent_rounded,
                        },
                    )
            return created

    def _build_notification(
        self,
        ticket: Ticket,
        definition: SLADefinition,
        evaluation: PhaseEvaluation,
        kind: ThresholdKind,
        now: datetime,
    ) -> Notification:
        percent = evaluation.percent_rounded
        message = (
            f"SLA {kind.phase.value} {_LEVEL_LABELS[kind.level]} "
            f"for Ticket #{ticket.id} ({percent}%)"
        )
        payload = {
            "tenant": self._tenant,
            "ticket_id": ticket.id,
            "percent_used": percent,
            "due_at": evaluation.deadline.isoformat() if evaluation.deadline else None,
            "sla_name": definition.name,
            "phase": kind.phase.value,
        }
        return Notification(
            id=None,
            ticket_id=ticket.id,
            type=kind.notification_type,
            severity=kind.severity,
            message=message,
            payload=payload,
            created_at=now,
        )


class NotificationService:
    """
    Read and acknowledge access to the notification log.
    """

    def __init__(self, tenant: str, scope: RepositoryScope):
        self._tenant = tenant
        self._scope = scope

    async def list_notifications(
        self,
        filters: NotificationQueryDTO,
    ) -> Tuple[int, List[Notification]]:
        async with self._scope() as repos:
            return await repos.notifications.query(filters)

    async def mark_delivered(
        self,
        notification_id: int,
        at: Optional[datetime] = None,
    ) -> Notification:
        """
        Mark one notification delivered.

        Idempotent: an already-delivered row keeps its original delivered_at.

        Raises:
            NotFoundError: unknown id
        """
        async with self._scope() as repos:
            notification = await repos.notifications.mark_delivered(notification_id, at or utcnow())
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        return notification

    async def bulk_mark_delivered(
        self,
        notification_ids: Sequence[int],
        at: Optional[datetime] = None,
        max_batch: int = MAX_BULK_DELIVERED,
    ) -> int:
        """
        Mark several notifications delivered.

        Returns:
            Number of rows newly marked; unknown and already-delivered ids
            are skipped.

        Raises:
            ValidationException: more than max_batch ids
        """
        if len(notification_ids) > max_batch:
            raise ValidationException(
                f"At most {max_batch} notifications can be marked delivered at once",
                {"count": len(notification_ids), "max_batch": max_batch},
            )
        if not notification_ids:
            return 0

        async with self._scope() as repos:
            updated = await repos.notifications.bulk_mark_delivered(
                list(dict.fromkeys(notification_ids)), at or utcnow()
            )
        logger.info(
            "Notifications marked delivered",
            extra={"tenant": self._tenant, "requested": len(notification_ids), "updated": updated},
        )
        return updated

    async def list_undelivered(self, limit: int = 50) -> List[Notification]:
        async with self._scope() as repos:
            return await repos.notifications.list_undelivered(limit)
