"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the YAML seed catalog
- External: External service integrations (scheduler, Slack delivery)
"""

from helpdesk_sla.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    SLADefinitionModel,
    CustomerCompanyModel,
    CustomerModel,
    CategorySLAMappingModel,
    CMDBItemModel,
    TicketModel,
    NotificationModel,
)
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemySLAConfigRepository,
    SQLAlchemyTicketSLARepository,
    SQLAlchemyNotificationRepository,
    YAMLSeedLoader,
    tenant_scope,
)
from helpdesk_sla.sla.infrastructure.external import (
    SLAScheduler,
    SlackClient,
    SlackNotificationDispatcher,
    run_tenant_tick,
)

__all__ = [
    "BusinessHoursProfileModel",
    "SLADefinitionModel",
    "CustomerCompanyModel",
    "CustomerModel",
    "CategorySLAMappingModel",
    "CMDBItemModel",
    "TicketModel",
    "NotificationModel",
    "SQLAlchemySLAConfigRepository",
    "SQLAlchemyTicketSLARepository",
    "SQLAlchemyNotificationRepository",
    "YAMLSeedLoader",
    "tenant_scope",
    "SLAScheduler",
    "SlackClient",
    "SlackNotificationDispatcher",
    "run_tenant_tick",
]
