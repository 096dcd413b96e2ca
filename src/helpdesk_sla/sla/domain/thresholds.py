"""
Threshold Evaluation
====================

Pure functions deciding which breach thresholds a ticket has crossed.

Per phase a ticket moves not-yet-due -> near -> breached -> past. The
evaluator only reports what the clock says now; monotonicity comes from the
ticket markers, which are never cleared.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from helpdesk_sla.config import SLAPhase, SLAState, ThresholdLevel, TicketPhase
from helpdesk_sla.sla.domain.business_hours import BusinessHoursCalculator
from helpdesk_sla.sla.domain.entities import (
    BusinessHoursProfile,
    SLADefinition,
    ThresholdKind,
    Ticket,
)


@dataclass
class PhaseEvaluation:
    """Consumption of one SLA clock at a given instant."""

    phase: SLAPhase
    anchor: Optional[datetime]
    deadline: Optional[datetime]
    target_minutes: int
    elapsed_minutes: int = 0
    percent_used: float = 0.0
    state: SLAState = SLAState.ON_TRACK
    crossed: List[ThresholdKind] = field(default_factory=list)
    # Business minutes left; negative once overdue, None unless the clock is running
    remaining_minutes: Optional[int] = None

    @property
    def percent_rounded(self) -> int:
        return int(round(self.percent_used))


@dataclass
class SLAReport:
    """Everything a status read reports about a ticket's SLA at one instant."""

    phases: Dict[SLAPhase, PhaseEvaluation]
    ticket_phase: TicketPhase
    outside_business_hours: bool
    timezone: str


class BreachEvaluator:
    """
    Stateless threshold logic shared by the breach monitor and status reads.
    """

    @staticmethod
    def percent_used(elapsed_minutes: int, target_minutes: int) -> float:
        """Percentage of the target consumed; 0 when there is no positive target."""
        if target_minutes <= 0:
            return 0.0
        return elapsed_minutes / target_minutes * 100

    @staticmethod
    def remaining_minutes(
        profile: Optional[BusinessHoursProfile], deadline: datetime, now: datetime
    ) -> int:
        """Business minutes until the deadline, or minus the minutes since it passed."""
        if now >= deadline:
            return -BusinessHoursCalculator.elapsed_business_minutes(profile, deadline, now)
        return BusinessHoursCalculator.elapsed_business_minutes(profile, now, deadline)

    @classmethod
    def evaluate_phase(
        cls,
        phase: SLAPhase,
        definition: SLADefinition,
        anchor: datetime,
        deadline: datetime,
        target_minutes: int,
        now: datetime,
    ) -> PhaseEvaluation:
        """
        Measure a running clock and list the thresholds it currently satisfies.

        near: percent >= near_breach_percent
        breached: deadline passed, or percent >= 100
        past: percent >= past_breach_percent
        """
        elapsed = BusinessHoursCalculator.elapsed_business_minutes(
            definition.business_hours, anchor, now
        )
        percent = cls.percent_used(elapsed, target_minutes)

        met: Dict[ThresholdLevel, bool] = {
            ThresholdLevel.NEAR: percent >= definition.near_breach_percent,
            ThresholdLevel.BREACHED: now >= deadline or percent >= 100,
            ThresholdLevel.PAST: percent >= definition.past_breach_percent,
        }
        crossed = [kind for kind in ThresholdKind.for_phase(phase) if met[kind.level]]

        if met[ThresholdLevel.BREACHED] or met[ThresholdLevel.PAST]:
            state = SLAState.BREACHED
        elif met[ThresholdLevel.NEAR]:
            state = SLAState.NEAR_BREACH
        else:
            state = SLAState.ON_TRACK

        return PhaseEvaluation(
            phase=phase,
            anchor=anchor,
            deadline=deadline,
            target_minutes=target_minutes,
            elapsed_minutes=elapsed,
            percent_used=percent,
            state=state,
            crossed=crossed,
            remaining_minutes=cls.remaining_minutes(definition.business_hours, deadline, now),
        )

    @classmethod
    def running_phases(
        cls, ticket: Ticket, definition: SLADefinition, now: datetime
    ) -> List[PhaseEvaluation]:
        """
        Evaluate the clocks the breach monitor watches.

        The response clock runs until first response. The resolve clock is
        only watched once the ticket has been responded to and has a resolve
        deadline.
        """
        evaluations = []

        if ticket.first_responded_at is None and ticket.response_due_at is not None:
            evaluations.append(
                cls.evaluate_phase(
                    SLAPhase.RESPONSE,
                    definition,
                    ticket.created_at,
                    ticket.response_due_at,
                    definition.response_target_minutes,
                    now,
                )
            )

        if ticket.first_responded_at is not None and ticket.resolve_due_at is not None:
            evaluations.append(
                cls.evaluate_phase(
                    SLAPhase.RESOLVE,
                    definition,
                    ticket.resolve_anchor(definition),
                    ticket.resolve_due_at,
                    definition.resolve_minutes,
                    now,
                )
            )

        return evaluations

    @classmethod
    def status(
        cls, ticket: Ticket, definition: Optional[SLADefinition], now: datetime
    ) -> Dict[SLAPhase, PhaseEvaluation]:
        """
        Full per-phase status for reporting, including finished clocks.
        """
        if definition is None:
            return {
                phase: PhaseEvaluation(phase, None, None, 0, state=SLAState.NO_SLA)
                for phase in SLAPhase
            }

        result: Dict[SLAPhase, PhaseEvaluation] = {}

        # Response clock
        if ticket.response_due_at is None:
            result[SLAPhase.RESPONSE] = PhaseEvaluation(
                SLAPhase.RESPONSE, ticket.created_at, None,
                definition.response_target_minutes, state=SLAState.NO_SLA,
            )
        elif ticket.first_responded_at is not None:
            result[SLAPhase.RESPONSE] = cls._finished(
                SLAPhase.RESPONSE, definition, ticket.created_at,
                ticket.response_due_at, definition.response_target_minutes,
                ticket.first_responded_at,
            )
        else:
            result[SLAPhase.RESPONSE] = cls.evaluate_phase(
                SLAPhase.RESPONSE, definition, ticket.created_at,
                ticket.response_due_at, definition.response_target_minutes, now,
            )

        # Resolve clock
        anchor = ticket.resolve_anchor(definition)
        if anchor is None or ticket.resolve_due_at is None:
            result[SLAPhase.RESOLVE] = PhaseEvaluation(
                SLAPhase.RESOLVE, anchor, ticket.resolve_due_at,
                definition.resolve_minutes, state=SLAState.PENDING,
            )
        elif ticket.resolved_at is not None:
            result[SLAPhase.RESOLVE] = cls._finished(
                SLAPhase.RESOLVE, definition, anchor, ticket.resolve_due_at,
                definition.resolve_minutes, ticket.resolved_at,
            )
        else:
            result[SLAPhase.RESOLVE] = cls.evaluate_phase(
                SLAPhase.RESOLVE, definition, anchor, ticket.resolve_due_at,
                definition.resolve_minutes, now,
            )

        return result

    @classmethod
    def report(
        cls, ticket: Ticket, definition: Optional[SLADefinition], now: datetime
    ) -> SLAReport:
        """Per-phase status plus the ticket's lifecycle phase and calendar position."""
        profile = definition.business_hours if definition else None
        return SLAReport(
            phases=cls.status(ticket, definition, now),
            ticket_phase=ticket.phase,
            outside_business_hours=(
                profile is not None
                and not BusinessHoursCalculator.is_within_business_hours(profile, now)
            ),
            timezone=profile.timezone if profile and profile.timezone else "UTC",
        )

    @classmethod
    def _finished(
        cls,
        phase: SLAPhase,
        definition: SLADefinition,
        anchor: datetime,
        deadline: datetime,
        target_minutes: int,
        finished_at: datetime,
    ) -> PhaseEvaluation:
        elapsed = BusinessHoursCalculator.elapsed_business_minutes(
            definition.business_hours, anchor, finished_at
        )
        return PhaseEvaluation(
            phase=phase,
            anchor=anchor,
            deadline=deadline,
            target_minutes=target_minutes,
            elapsed_minutes=elapsed,
            percent_used=cls.percent_used(elapsed, target_minutes),
            state=SLAState.MET if finished_at <= deadline else SLAState.BREACHED,
        )
