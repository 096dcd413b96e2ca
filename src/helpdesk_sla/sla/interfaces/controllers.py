"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA endpoints, scoped per tenant.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from helpdesk_sla.config import DEFAULT_NOTIFICATION_PAGE, SLAPhase
from helpdesk_sla.infrastructure.database import get_session_maker
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import (
    BreachMonitorService,
    BulkDeliveredRequest,
    BulkDeliveredResponse,
    DeliveredResponse,
    FirstResponseRequest,
    MonitorRunResponse,
    NotificationListResponse,
    NotificationQueryDTO,
    NotificationResponse,
    NotificationService,
    PhaseStatusResponse,
    SLAAssignmentService,
    TicketSLAResponse,
)
from helpdesk_sla.sla.domain import (
    Notification,
    PhaseEvaluation,
    SLADefinition,
    SLAReport,
    ThresholdKind,
    Ticket,
)
from helpdesk_sla.sla.infrastructure import tenant_scope

logger = get_logger(__name__)
router = APIRouter(prefix="/sla/{tenant_code}", tags=["SLA"])


# ========== Dependencies ==========

async def get_tenant(tenant_code: str) -> str:
    """Validate the tenant code; unknown tenants are a 404."""
    get_session_maker(tenant_code)
    return tenant_code


async def get_notification_service(tenant: str = Depends(get_tenant)) -> NotificationService:
    return NotificationService(tenant, tenant_scope(tenant))


async def get_assignment_service(tenant: str = Depends(get_tenant)) -> SLAAssignmentService:
    return SLAAssignmentService(tenant, tenant_scope(tenant))


async def get_monitor_service(tenant: str = Depends(get_tenant)) -> BreachMonitorService:
    return BreachMonitorService(tenant, tenant_scope(tenant))


# ========== Mapping helpers ==========

def _notification_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        ticket_id=notification.ticket_id,
        type=notification.type,
        severity=notification.severity.value,
        message=notification.message,
        payload=notification.payload,
        created_at=notification.created_at,
        delivered_at=notification.delivered_at,
    )


def _phase_response(evaluation: PhaseEvaluation) -> PhaseStatusResponse:
    return PhaseStatusResponse(
        state=evaluation.state.value,
        anchor=evaluation.anchor,
        due_at=evaluation.deadline,
        target_minutes=evaluation.target_minutes,
        elapsed_business_minutes=evaluation.elapsed_minutes,
        percent_used=evaluation.percent_rounded,
        remaining_minutes=evaluation.remaining_minutes,
    )


def _ticket_sla_response(
    ticket: Ticket,
    definition: Optional[SLADefinition],
    report: SLAReport,
) -> TicketSLAResponse:
    return TicketSLAResponse(
        ticket_id=ticket.id,
        status=ticket.status,
        sla_definition_id=ticket.sla_definition_id,
        sla_name=definition.name if definition else None,
        sla_source=ticket.sla_source.value if ticket.sla_source else None,
        response_due_at=ticket.response_due_at,
        resolve_due_at=ticket.resolve_due_at,
        first_responded_at=ticket.first_responded_at,
        resolved_at=ticket.resolved_at,
        sla_phase=report.ticket_phase.value,
        outside_business_hours=report.outside_business_hours,
        timezone=report.timezone,
        response=_phase_response(report.phases[SLAPhase.RESPONSE]),
        resolve=_phase_response(report.phases[SLAPhase.RESOLVE]),
        notified={kind.notification_type: ticket.marker(kind) for kind in ThresholdKind},
    )


# ========== Notification Routes ==========

@router.get(
    "/notifications",
    response_model=NotificationListResponse,
    summary="List SLA notifications",
    description="""
    Notifications newest first, with optional filters.

    `limit` defaults to 50 and is capped at 200; `delivered` accepts
    true/false or 1/0. Unknown severities are ignored.
    """
)
async def list_notifications(
    severity: Optional[str] = Query(None, description="info, warning or critical"),
    type: Optional[str] = Query(None, description="Notification type, e.g. SLA_RESPONSE_NEAR"),
    delivered: Optional[bool] = Query(None),
    date_from: Optional[datetime] = Query(None, description="Created at or after"),
    date_to: Optional[datetime] = Query(None, description="Created at or before"),
    ticket_id: Optional[int] = Query(None),
    limit: int = Query(DEFAULT_NOTIFICATION_PAGE),
    offset: int = Query(0),
    service: NotificationService = Depends(get_notification_service),
):
    filters = NotificationQueryDTO(
        severity=severity,
        type=type,
        delivered=delivered,
        date_from=date_from,
        date_to=date_to,
        ticket_id=ticket_id,
        limit=limit,
        offset=offset,
    )
    total, items = await service.list_notifications(filters)
    return NotificationListResponse(
        total=total,
        limit=filters.limit,
        offset=filters.offset,
        items=[_notification_response(n) for n in items],
    )


@router.post(
    "/notifications/delivered",
    response_model=BulkDeliveredResponse,
    summary="Mark several notifications delivered",
)
async def bulk_mark_delivered(
    request: BulkDeliveredRequest,
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.bulk_mark_delivered(request.ids)
    return BulkDeliveredResponse(updated_count=updated)


@router.post(
    "/notifications/{notification_id}/delivered",
    response_model=DeliveredResponse,
    summary="Mark one notification delivered",
    responses={404: {"description": "Notification not found"}},
)
async def mark_delivered(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service),
):
    notification = await service.mark_delivered(notification_id)
    return DeliveredResponse(id=notification.id, delivered_at=notification.delivered_at)


# ========== Ticket SLA Routes ==========

@router.post(
    "/tickets/{ticket_id}/sla/apply",
    response_model=TicketSLAResponse,
    summary="Resolve a ticket's SLA and recompute its deadlines",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "No SLA definition resolves"},
        422: {"description": "Business hours profile is malformed"},
    },
)
async def apply_sla(
    ticket_id: int,
    service: SLAAssignmentService = Depends(get_assignment_service),
):
    await service.apply(ticket_id)
    ticket, definition, report = await service.get_status(ticket_id)
    return _ticket_sla_response(ticket, definition, report)


@router.post(
    "/tickets/{ticket_id}/first-response",
    response_model=TicketSLAResponse,
    summary="Record a ticket's first response",
    responses={404: {"description": "Ticket not found"}},
)
async def record_first_response(
    ticket_id: int,
    request: Optional[FirstResponseRequest] = Body(None),
    service: SLAAssignmentService = Depends(get_assignment_service),
):
    responded_at = request.responded_at if request else None
    await service.record_first_response(ticket_id, responded_at)
    ticket, definition, report = await service.get_status(ticket_id)
    return _ticket_sla_response(ticket, definition, report)


@router.get(
    "/tickets/{ticket_id}/sla",
    response_model=TicketSLAResponse,
    summary="Get a ticket's SLA status",
    responses={404: {"description": "Ticket not found"}},
)
async def get_ticket_sla(
    ticket_id: int,
    service: SLAAssignmentService = Depends(get_assignment_service),
):
    ticket, definition, report = await service.get_status(ticket_id)
    return _ticket_sla_response(ticket, definition, report)


# ========== Monitor Routes ==========

@router.post(
    "/monitor/run",
    response_model=MonitorRunResponse,
    summary="Run one breach monitor tick for this tenant now",
)
async def run_monitor(
    service: BreachMonitorService = Depends(get_monitor_service),
):
    logger.info("Manual SLA tick requested", extra={"tenant": service.tenant})
    summary = await service.run_tick()
    return MonitorRunResponse(**summary)
