"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from contextlib import asynccontextmanager
from datetime import datetime, time, timezone
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import (
    CLOSED_STATUSES,
    DEFAULT_NEAR_BREACH_PERCENT,
    DEFAULT_PAST_BREACH_PERCENT,
    Severity,
    SLASource,
)
from helpdesk_sla.core import ConfigurationError, RepositoryException, ValidationException
from helpdesk_sla.infrastructure.database import get_session_context
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.dto import NotificationQueryDTO
from helpdesk_sla.sla.application.services import (
    INotificationRepository,
    ISLAConfigRepository,
    ITicketSLARepository,
    RepositoryScope,
    SLARepositories,
)
from helpdesk_sla.sla.domain import (
    BusinessHoursProfile,
    Deadlines,
    Notification,
    ResolvedSLA,
    SLAContext,
    SLADefinition,
    ThresholdKind,
    Ticket,
)
from helpdesk_sla.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    CategorySLAMappingModel,
    CMDBItemModel,
    CustomerCompanyModel,
    CustomerModel,
    NotificationModel,
    SLADefinitionModel,
    TicketModel,
)

logger = get_logger(__name__)


# ========== Mappers ==========

def profile_to_domain(model: BusinessHoursProfileModel) -> BusinessHoursProfile:
    return BusinessHoursProfile(
        id=model.id,
        timezone=model.timezone,
        days_of_week=frozenset(model.days_of_week or ()),
        start_time=model.start_time,
        end_time=model.end_time,
        is_24x7=model.is_24x7,
        name=model.name,
        is_active=model.is_active,
    )


def definition_to_domain(model: SLADefinitionModel) -> SLADefinition:
    """
    Map a definition row to the domain entity.

    Raises:
        ConfigurationError: if the stored thresholds or targets are invalid
    """
    try:
        return SLADefinition(
            id=model.id,
            name=model.name,
            response_target_minutes=model.response_target_minutes,
            resolve_target_minutes=model.resolve_target_minutes,
            profile=profile_to_domain(model.profile) if model.profile else None,
            resolve_after_response_minutes=model.resolve_after_response_minutes,
            near_breach_percent=model.near_breach_percent,
            past_breach_percent=model.past_breach_percent,
            is_active=model.is_active,
            is_default=model.is_default,
        )
    except ValueError as e:
        raise ConfigurationError(
            f"SLA definition '{model.name}' is invalid: {e}",
            {"sla_definition_id": model.id},
        ) from e


def ticket_to_domain(model: TicketModel) -> Ticket:
    """
    Map a ticket row to the domain entity.

    Raises:
        ValidationException: if the stored lifecycle timestamps are inconsistent
    """
    try:
        return Ticket(
            id=model.id,
            created_at=model.created_at,
            status=model.status,
            requester_id=model.requester_id,
            category=model.category,
            cmdb_item_id=model.cmdb_item_id,
            sla_override_id=model.sla_override_id,
            first_responded_at=model.first_responded_at,
            resolved_at=model.resolved_at,
            sla_definition_id=model.sla_definition_id,
            sla_source=SLASource(model.sla_source) if model.sla_source else None,
            response_due_at=model.response_due_at,
            resolve_due_at=model.resolve_due_at,
            markers={kind: getattr(model, kind.column) for kind in ThresholdKind},
        )
    except ValueError as e:
        raise ValidationException(
            f"Ticket {model.id} has inconsistent SLA data: {e}",
            {"ticket_id": model.id},
        ) from e


def notification_to_domain(model: NotificationModel) -> Notification:
    return Notification(
        id=model.id,
        ticket_id=model.ticket_id,
        type=model.type,
        severity=Severity(model.severity),
        message=model.message,
        payload=model.payload_json,
        created_at=model.created_at,
        delivered_at=model.delivered_at,
    )


# ========== Repositories ==========

class SQLAlchemySLAConfigRepository(ISLAConfigRepository):
    """
    Loads SLA definitions and the per-layer override candidates.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_definition(self, definition_id: int) -> Optional[SLADefinition]:
        model = await self._session.get(SLADefinitionModel, definition_id)
        if model is None:
            return None
        return definition_to_domain(model)

    async def _get_active(self, definition_id: Optional[int]) -> Optional[SLADefinition]:
        if definition_id is None:
            return None
        definition = await self.get_definition(definition_id)
        if definition is None or not definition.is_active:
            return None
        return definition

    async def load_context(self, ticket: Ticket) -> SLAContext:
        """
        Build the override context for a ticket.

        Inactive or dangling references resolve to None so the resolver
        falls through to the next layer.
        """
        user_override = None
        company_default = None
        customer = None
        if ticket.requester_id is not None:
            result = await self._session.execute(
                select(CustomerModel).where(CustomerModel.user_id == ticket.requester_id).limit(1)
            )
            customer = result.scalar_one_or_none()

        if customer is not None:
            user_override = await self._get_active(customer.sla_override_id)
            if customer.customer_company_id is not None:
                company_default = await self._company_definition(customer.customer_company_id)

        return SLAContext(
            ticket_override=await self._get_active(ticket.sla_override_id),
            user_override=user_override,
            company_default=company_default,
            category_mapping=await self._category_definition(ticket.category),
            cmdb_item=await self._cmdb_definition(ticket.cmdb_item_id),
            tenant_default=await self.get_tenant_default(),
        )

    async def _company_definition(self, company_id: int) -> Optional[SLADefinition]:
        company = await self._session.get(CustomerCompanyModel, company_id)
        if company is None:
            return None

        definition = await self._get_active(company.sla_definition_id)
        if definition is not None:
            return definition

        if company.sla_level and company.sla_level.strip():
            return await self.find_by_name(company.sla_level)
        return None

    async def find_by_name(self, name: str) -> Optional[SLADefinition]:
        """
        Case-insensitive partial name match among active definitions.

        An exact (case-insensitive) match wins, then the lowest id.
        """
        needle = name.strip().lower()
        lowered = func.lower(SLADefinitionModel.name)
        stmt = (
            select(SLADefinitionModel)
            .where(
                lowered.contains(needle, autoescape=True),
                SLADefinitionModel.is_active.is_(True),
            )
            .order_by(case((lowered == needle, 0), else_=1), SLADefinitionModel.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.unique().scalar_one_or_none()
        return definition_to_domain(model) if model else None

    async def _category_definition(self, category: Optional[str]) -> Optional[SLADefinition]:
        if not category or not category.strip():
            return None
        stmt = select(CategorySLAMappingModel.sla_definition_id).where(
            CategorySLAMappingModel.category == category.strip().lower(),
            CategorySLAMappingModel.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return await self._get_active(result.scalar_one_or_none())

    async def _cmdb_definition(self, cmdb_item_id: Optional[int]) -> Optional[SLADefinition]:
        if cmdb_item_id is None:
            return None
        item = await self._session.get(CMDBItemModel, cmdb_item_id)
        if item is None:
            return None
        return await self._get_active(item.sla_definition_id)

    async def get_tenant_default(self) -> Optional[SLADefinition]:
        """The active definition flagged is_default, else the first active one."""
        stmt = (
            select(SLADefinitionModel)
            .where(SLADefinitionModel.is_active.is_(True))
            .order_by(SLADefinitionModel.is_default.desc(), SLADefinitionModel.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.unique().scalar_one_or_none()
        return definition_to_domain(model) if model else None


class SQLAlchemyTicketSLARepository(ITicketSLARepository):
    """
    SQLAlchemy implementation of the ticket SLA repository.

    All writes are column-level UPDATEs so the ticket subsystem's own
    columns are never overwritten.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: int) -> Optional[Ticket]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return ticket_to_domain(model) if model else None

    async def list_monitorable_ids(self) -> List[int]:
        stmt = (
            select(TicketModel.id)
            .where(
                TicketModel.status.not_in(CLOSED_STATUSES),
                TicketModel.resolved_at.is_(None),
                TicketModel.sla_definition_id.is_not(None),
                (TicketModel.response_due_at.is_not(None)) | (TicketModel.resolve_due_at.is_not(None)),
            )
            .order_by(TicketModel.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def save_resolution(
        self,
        ticket_id: int,
        resolved: ResolvedSLA,
        deadlines: Deadlines,
    ) -> None:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(
                sla_definition_id=resolved.definition.id,
                sla_source=resolved.source.value,
                response_due_at=deadlines.response_due_at,
                resolve_due_at=deadlines.resolve_due_at,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise RepositoryException(f"Ticket {ticket_id} not found", {"ticket_id": ticket_id})

    async def record_first_response(self, ticket_id: int, responded_at: datetime) -> bool:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.first_responded_at.is_(None))
            .values(first_responded_at=responded_at, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_marker_if_null(
        self,
        ticket_id: int,
        kind: ThresholdKind,
        at: datetime,
    ) -> bool:
        """
        UPDATE tickets SET <marker> = :at WHERE id = :id AND <marker> IS NULL

        Exactly one concurrent caller sees rowcount 1.
        """
        column = getattr(TicketModel, kind.column)
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, column.is_(None))
            .values({kind.column: at})
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyNotificationRepository(INotificationRepository):
    """
    SQLAlchemy implementation of the notification log.

    Rows are only ever inserted, and delivered_at set once.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        model = NotificationModel(
            ticket_id=notification.ticket_id,
            type=notification.type,
            severity=Severity(notification.severity).value,
            message=notification.message,
            payload_json=notification.payload,
            created_at=notification.created_at or datetime.now(timezone.utc),
        )
        self._session.add(model)
        await self._session.flush()

        notification.id = model.id
        notification.created_at = model.created_at
        return notification

    async def get(self, notification_id: int) -> Optional[Notification]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return notification_to_domain(model) if model else None

    async def mark_delivered(self, notification_id: int, at: datetime) -> Optional[Notification]:
        await self._session.execute(
            update(NotificationModel)
            .where(NotificationModel.id == notification_id, NotificationModel.delivered_at.is_(None))
            .values(delivered_at=at)
            .execution_options(synchronize_session=False)
        )
        return await self.get(notification_id)

    async def bulk_mark_delivered(self, notification_ids: Sequence[int], at: datetime) -> int:
        if not notification_ids:
            return 0
        result = await self._session.execute(
            update(NotificationModel)
            .where(NotificationModel.id.in_(list(notification_ids)), NotificationModel.delivered_at.is_(None))
            .values(delivered_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def query(self, filters: NotificationQueryDTO) -> Tuple[int, List[Notification]]:
        conditions = []
        if filters.severity:
            conditions.append(NotificationModel.severity == filters.severity)
        if filters.type:
            conditions.append(NotificationModel.type == filters.type)
        if filters.delivered is True:
            conditions.append(NotificationModel.delivered_at.is_not(None))
        elif filters.delivered is False:
            conditions.append(NotificationModel.delivered_at.is_(None))
        if filters.date_from:
            conditions.append(NotificationModel.created_at >= filters.date_from)
        if filters.date_to:
            conditions.append(NotificationModel.created_at <= filters.date_to)
        if filters.ticket_id is not None:
            conditions.append(NotificationModel.ticket_id == filters.ticket_id)

        count_stmt = select(func.count()).select_from(NotificationModel).where(*conditions)
        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            select(NotificationModel)
            .where(*conditions)
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        result = await self._session.execute(stmt)
        return total, [notification_to_domain(m) for m in result.scalars().all()]

    async def list_undelivered(self, limit: int) -> List[Notification]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.delivered_at.is_(None))
            .order_by(NotificationModel.created_at.asc(), NotificationModel.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [notification_to_domain(m) for m in result.scalars().all()]


def tenant_scope(tenant_code: str) -> RepositoryScope:
    """
    Repository scope bound to one tenant database.

    Each entry opens a fresh session; leaving it commits, an error rolls back.
    """

    @asynccontextmanager
    async def scope() -> AsyncGenerator[SLARepositories, None]:
        async with get_session_context(tenant_code) as session:
            yield SLARepositories(
                config=SQLAlchemySLAConfigRepository(session),
                tickets=SQLAlchemyTicketSLARepository(session),
                notifications=SQLAlchemyNotificationRepository(session),
            )

    return scope


# ========== Seed catalog ==========

def _parse_time(value: Union[str, int, time]) -> time:
    # YAML 1.1 reads unquoted 17:00 as sexagesimal minutes
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        return time(value // 60, value % 60)
    return time.fromisoformat(value)


class SeedProfile(BaseModel):
    name: str
    timezone: str = "UTC"
    days_of_week: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)
    is_24x7: bool = False

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v):
        return _parse_time(v)


class SeedDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    profile: Optional[str] = Field(None, description="Business hours profile name")
    response_target_minutes: int = Field(..., ge=0)
    resolve_target_minutes: int = Field(..., ge=0)
    resolve_after_response_minutes: Optional[int] = Field(None, ge=0)
    near_breach_percent: int = DEFAULT_NEAR_BREACH_PERCENT
    past_breach_percent: int = DEFAULT_PAST_BREACH_PERCENT
    is_default: bool = False


class SLASeedCatalog(BaseModel):
    business_hours_profiles: List[SeedProfile] = Field(default_factory=list)
    sla_definitions: List[SeedDefinition] = Field(default_factory=list)


class YAMLSeedLoader:
    """
    Seeds default business hours profiles and SLA definitions from YAML.

    Rows are matched by name; existing rows are left untouched so tenant
    edits survive restarts.
    """

    def __init__(self, seed_path: Union[str, Path]):
        self._seed_path = Path(seed_path)

    def load(self) -> SLASeedCatalog:
        if not self._seed_path.exists():
            logger.warning(f"SLA seed file not found: {self._seed_path}")
            return SLASeedCatalog()

        with open(self._seed_path, "r") as f:
            data = yaml.safe_load(f) or {}
        return SLASeedCatalog.model_validate(data)

    async def seed(self, session: AsyncSession) -> Dict[str, int]:
        """Insert missing catalog rows. Returns counts of rows created."""
        catalog = self.load()
        created = {"business_hours_profiles": 0, "sla_definitions": 0}

        result = await session.execute(select(BusinessHoursProfileModel))
        profiles = {p.name: p for p in result.scalars().all()}
        for entry in catalog.business_hours_profiles:
            if entry.name in profiles:
                continue
            model = BusinessHoursProfileModel(**entry.model_dump())
            session.add(model)
            profiles[entry.name] = model
            created["business_hours_profiles"] += 1
        await session.flush()

        result = await session.execute(select(SLADefinitionModel.name))
        existing = set(result.scalars().all())
        for entry in catalog.sla_definitions:
            if entry.name in existing:
                continue
            values = entry.model_dump(exclude={"profile"})
            if entry.profile is not None:
                if entry.profile not in profiles:
                    raise ConfigurationError(
                        f"SLA definition '{entry.name}' references unknown profile '{entry.profile}'"
                    )
                values["business_hours_profile_id"] = profiles[entry.profile].id
            session.add(SLADefinitionModel(**values))
            created["sla_definitions"] += 1
        await session.flush()

        return created
