"""
Deadline Engine
===============

Turns a resolved SLA definition into a ticket's response and resolve
deadlines, measured in business time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from helpdesk_sla.sla.domain.business_hours import BusinessHoursCalculator
from helpdesk_sla.sla.domain.entities import SLADefinition, Ticket


@dataclass(frozen=True)
class Deadlines:
    """
    Computed deadlines for one ticket.

    resolve_due_at is None while a resolve-after-response SLA is waiting for
    the first response.
    """

    response_due_at: datetime
    resolve_due_at: Optional[datetime]


class DeadlineEngine:
    """
    Computes deadlines; callers persist them.

    Recompute on ticket creation, on any change of SLA source and when the
    first response is recorded. ProfileError from the calculator propagates.
    """

    def __init__(self, calculator: type[BusinessHoursCalculator] = BusinessHoursCalculator):
        self._calculator = calculator

    def compute_deadlines(self, ticket: Ticket, definition: SLADefinition) -> Deadlines:
        profile = definition.business_hours

        response_due_at = self._calculator.project_deadline(
            profile, ticket.created_at, definition.response_target_minutes
        )

        anchor = ticket.resolve_anchor(definition)
        if anchor is None:
            resolve_due_at = None
        else:
            resolve_due_at = self._calculator.project_deadline(
                profile, anchor, definition.resolve_minutes
            )

        return Deadlines(
            response_due_at=response_due_at,
            resolve_due_at=resolve_due_at,
        )
