"""
SLA Application Layer
======================

Application layer for the SLA module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_sla.sla.application.dto import (
    NotificationQueryDTO,
    BulkDeliveredRequest,
    FirstResponseRequest,
    NotificationResponse,
    NotificationListResponse,
    DeliveredResponse,
    BulkDeliveredResponse,
    PhaseStatusResponse,
    TicketSLAResponse,
    MonitorRunResponse,
)
from helpdesk_sla.sla.application.services import (
    SLAAssignmentService,
    BreachMonitorService,
    NotificationService,
    SLARepositories,
    RepositoryScope,
    ISLAConfigRepository,
    ITicketSLARepository,
    INotificationRepository,
)

__all__ = [
    # DTOs
    "NotificationQueryDTO",
    "BulkDeliveredRequest",
    "FirstResponseRequest",
    "NotificationResponse",
    "NotificationListResponse",
    "DeliveredResponse",
    "BulkDeliveredResponse",
    "PhaseStatusResponse",
    "TicketSLAResponse",
    "MonitorRunResponse",
    # Services
    "SLAAssignmentService",
    "BreachMonitorService",
    "NotificationService",
    "SLARepositories",
    "RepositoryScope",
    # Repository Interfaces
    "ISLAConfigRepository",
    "ITicketSLARepository",
    "INotificationRepository",
]
