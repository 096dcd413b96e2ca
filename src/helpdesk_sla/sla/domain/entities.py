"""
SLA Domain Entities
====================

Pure Python domain entities for SLA resolution and breach tracking.

Following Domain-Driven Design principles, these entities contain
business rules and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from helpdesk_sla.config import (
    CLOSED_STATUSES,
    DEFAULT_NEAR_BREACH_PERCENT,
    DEFAULT_PAST_BREACH_PERCENT,
    Severity,
    SLAPhase,
    SLASource,
    ThresholdLevel,
    TicketPhase,
)


ALL_WEEKDAYS: FrozenSet[int] = frozenset(range(1, 8))


@dataclass(frozen=True)
class BusinessHoursProfile:
    """
    Calendar describing which wall-clock intervals count toward SLA time.

    Weekdays use ISO numbering (1=Monday ... 7=Sunday). When is_24x7 is set,
    start_time/end_time are ignored.
    """

    id: Optional[int]
    timezone: Optional[str]
    days_of_week: FrozenSet[int] = ALL_WEEKDAYS
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)
    is_24x7: bool = False
    name: str = ""
    is_active: bool = True

    @classmethod
    def always_open(cls) -> "BusinessHoursProfile":
        """Profile used when an SLA definition has no business hours attached."""
        return cls(id=None, timezone="UTC", is_24x7=True, name="24x7")


@dataclass(frozen=True)
class SLADefinition:
    """
    Named pair of response/resolve targets plus breach thresholds.

    When resolve_after_response_minutes is set, resolution is measured from
    the first response instead of from ticket creation.
    """

    id: int
    name: str
    response_target_minutes: int
    resolve_target_minutes: int
    profile: Optional[BusinessHoursProfile] = None
    resolve_after_response_minutes: Optional[int] = None
    near_breach_percent: int = DEFAULT_NEAR_BREACH_PERCENT
    past_breach_percent: int = DEFAULT_PAST_BREACH_PERCENT
    is_active: bool = True
    is_default: bool = False

    def __post_init__(self):
        if not 0 < self.near_breach_percent < self.past_breach_percent:
            raise ValueError(
                "near_breach_percent must be positive and below past_breach_percent"
            )
        if self.response_target_minutes < 0 or self.resolve_target_minutes < 0:
            raise ValueError("SLA targets cannot be negative")

    @property
    def resolves_after_response(self) -> bool:
        """True when the resolve clock starts at first response."""
        return bool(self.resolve_after_response_minutes)

    @property
    def resolve_minutes(self) -> int:
        """Business minutes allowed for the resolve phase."""
        if self.resolves_after_response:
            return self.resolve_after_response_minutes
        return self.resolve_target_minutes

    @property
    def business_hours(self) -> BusinessHoursProfile:
        """The attached profile, or an always-open UTC calendar."""
        return self.profile or BusinessHoursProfile.always_open()


@dataclass(frozen=True)
class ResolvedSLA:
    """Outcome of SLA resolution: the winning definition and its layer."""

    definition: SLADefinition
    source: SLASource
    rule: str


class ThresholdKind(Enum):
    """
    One (phase, level) pair; each maps to a ticket marker column and a
    notification type.
    """

    RESPONSE_NEAR = ("SLA_RESPONSE_NEAR", SLAPhase.RESPONSE, ThresholdLevel.NEAR)
    RESPONSE_BREACHED = ("SLA_RESPONSE_BREACHED", SLAPhase.RESPONSE, ThresholdLevel.BREACHED)
    RESPONSE_PAST = ("SLA_RESPONSE_PAST", SLAPhase.RESPONSE, ThresholdLevel.PAST)
    RESOLVE_NEAR = ("SLA_RESOLVE_NEAR", SLAPhase.RESOLVE, ThresholdLevel.NEAR)
    RESOLVE_BREACHED = ("SLA_RESOLVE_BREACHED", SLAPhase.RESOLVE, ThresholdLevel.BREACHED)
    RESOLVE_PAST = ("SLA_RESOLVE_PAST", SLAPhase.RESOLVE, ThresholdLevel.PAST)

    def __init__(self, notification_type: str, phase: SLAPhase, level: ThresholdLevel):
        self.notification_type = notification_type
        self.phase = phase
        self.level = level

    @property
    def column(self) -> str:
        """Ticket column holding the idempotency marker."""
        return f"notified_{self.phase.value}_{self.level.value}_at"

    @property
    def severity(self) -> Severity:
        return Severity.WARNING if self.level == ThresholdLevel.NEAR else Severity.CRITICAL

    @classmethod
    def for_phase(cls, phase: SLAPhase) -> list["ThresholdKind"]:
        """Kinds of one phase in crossing order: near, breached, past."""
        return [kind for kind in cls if kind.phase == phase]

    @classmethod
    def from_type(cls, notification_type: str) -> "ThresholdKind":
        for kind in cls:
            if kind.notification_type == notification_type:
                return kind
        raise ValueError(f"Unknown notification type: {notification_type}")


@dataclass
class Ticket:
    """
    The slice of a helpdesk ticket the SLA engine reads and writes.

    Ticket CRUD belongs to the ticket subsystem; this entity only carries
    the linkage used for SLA resolution, the computed deadlines and the
    threshold markers.
    """

    id: int
    created_at: datetime
    status: str

    # Linkage consulted by the resolver
    requester_id: Optional[int] = None
    category: Optional[str] = None
    cmdb_item_id: Optional[int] = None
    sla_override_id: Optional[int] = None

    # Lifecycle
    first_responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    # Resolution outcome
    sla_definition_id: Optional[int] = None
    sla_source: Optional[SLASource] = None
    response_due_at: Optional[datetime] = None
    resolve_due_at: Optional[datetime] = None

    # Idempotency markers, one per ThresholdKind
    markers: Dict[ThresholdKind, Optional[datetime]] = field(default_factory=dict)

    def __post_init__(self):
        if self.first_responded_at and self.first_responded_at < self.created_at:
            raise ValueError("first_responded_at cannot be before created_at")

    @property
    def is_open(self) -> bool:
        """Resolved or closed tickets drop out of breach monitoring."""
        return self.status not in CLOSED_STATUSES and self.resolved_at is None

    @property
    def phase(self) -> TicketPhase:
        if self.resolved_at is not None:
            return TicketPhase.RESOLVED
        if self.first_responded_at is not None:
            return TicketPhase.IN_PROGRESS
        return TicketPhase.AWAITING_RESPONSE

    def resolve_anchor(self, definition: SLADefinition) -> Optional[datetime]:
        """Start of the resolve clock; None while waiting for a first response."""
        if definition.resolves_after_response:
            return self.first_responded_at
        return self.created_at

    def marker(self, kind: ThresholdKind) -> Optional[datetime]:
        return self.markers.get(kind)

    def is_notified(self, kind: ThresholdKind) -> bool:
        return self.markers.get(kind) is not None


@dataclass
class Notification:
    """
    Append-only record of a threshold crossing.

    Only delivered_at is ever mutated, and only once.
    """

    id: Optional[int]
    ticket_id: int
    type: str
    severity: Severity
    message: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def is_delivered(self) -> bool:
        return self.delivered_at is not None
