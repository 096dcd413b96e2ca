"""
SLA Resolver
============

Picks the single effective SLA definition for a ticket from the layered
override hierarchy:

    ticket override > per-user override > company default
        > category mapping > CMDB item > tenant default

The repository loads each layer's candidate into an SLAContext; the resolver
itself does no I/O. Rules are tried in order and the first active candidate
wins, so later layers are never consulted once one matches.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from helpdesk_sla.config import SLASource
from helpdesk_sla.core import ConfigurationError
from helpdesk_sla.sla.domain.entities import ResolvedSLA, SLADefinition, Ticket


@dataclass(frozen=True)
class SLAContext:
    """Candidate definition per override layer; None where the layer has nothing."""

    ticket_override: Optional[SLADefinition] = None
    user_override: Optional[SLADefinition] = None
    company_default: Optional[SLADefinition] = None
    category_mapping: Optional[SLADefinition] = None
    cmdb_item: Optional[SLADefinition] = None
    tenant_default: Optional[SLADefinition] = None


Rule = Tuple[str, SLASource, Callable[[Ticket, SLAContext], Optional[SLADefinition]]]


DEFAULT_RULES: Tuple[Rule, ...] = (
    ("ticket_override", SLASource.TICKET, lambda ticket, ctx: ctx.ticket_override),
    ("user_override", SLASource.CUSTOMER, lambda ticket, ctx: ctx.user_override),
    ("company_default", SLASource.CUSTOMER, lambda ticket, ctx: ctx.company_default),
    ("category_mapping", SLASource.CATEGORY, lambda ticket, ctx: ctx.category_mapping),
    ("cmdb_item", SLASource.CMDB, lambda ticket, ctx: ctx.cmdb_item),
    ("tenant_default", SLASource.DEFAULT, lambda ticket, ctx: ctx.tenant_default),
)


class SLAResolver:
    """Chain of resolver rules tried in precedence order."""

    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES):
        self._rules = tuple(rules)

    def resolve(self, ticket: Ticket, context: SLAContext) -> ResolvedSLA:
        """
        Resolve the effective SLA for a ticket.

        Raises:
            ConfigurationError: if no layer yields an active definition
        """
        for rule_name, source, rule in self._rules:
            definition = rule(ticket, context)
            if definition is not None and definition.is_active:
                return ResolvedSLA(definition=definition, source=source, rule=rule_name)

        raise ConfigurationError(
            f"No SLA definition resolves for ticket {ticket.id}; "
            "the tenant has no active default SLA",
            {"ticket_id": ticket.id},
        )
