"""
SLA Domain Layer
================

Domain layer for SLA resolution and breach tracking.

Contains:
- Entities: BusinessHoursProfile, SLADefinition, Ticket, Notification
- Domain Services: BusinessHoursCalculator, SLAResolver, DeadlineEngine,
  BreachEvaluator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.entities import (
    BusinessHoursProfile,
    SLADefinition,
    ResolvedSLA,
    ThresholdKind,
    Ticket,
    Notification,
)
from helpdesk_sla.sla.domain.business_hours import BusinessHoursCalculator
from helpdesk_sla.sla.domain.resolver import SLAContext, SLAResolver
from helpdesk_sla.sla.domain.deadlines import Deadlines, DeadlineEngine
from helpdesk_sla.sla.domain.thresholds import BreachEvaluator, PhaseEvaluation, SLAReport

__all__ = [
    # Entities
    "BusinessHoursProfile",
    "SLADefinition",
    "ResolvedSLA",
    "ThresholdKind",
    "Ticket",
    "Notification",
    # Domain Services
    "BusinessHoursCalculator",
    "SLAContext",
    "SLAResolver",
    "Deadlines",
    "DeadlineEngine",
    "BreachEvaluator",
    "PhaseEvaluation",
    "SLAReport",
]
