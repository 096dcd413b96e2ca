"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities. The ticket
table is owned by the ticket subsystem; only the columns the SLA engine
reads or writes are mapped here.
"""

from datetime import datetime, time, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk_sla.config import DEFAULT_NEAR_BREACH_PERCENT, DEFAULT_PAST_BREACH_PERCENT
from helpdesk_sla.infrastructure.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessHoursProfileModel(Base):
    """
    Database model for BusinessHoursProfile.

    Maps to the 'business_hours_profiles' table.
    """
    __tablename__ = "business_hours_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, default="UTC")
    days_of_week: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=lambda: [1, 2, 3, 4, 5])
    start_time: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    end_time: Mapped[time] = mapped_column(Time, nullable=False, default=time(17, 0))
    is_24x7: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class SLADefinitionModel(Base):
    """
    Database model for SLADefinition.

    Maps to the 'sla_definitions' table.
    """
    __tablename__ = "sla_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    business_hours_profile_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("business_hours_profiles.id", ondelete="RESTRICT"), nullable=True
    )
    profile: Mapped[Optional[BusinessHoursProfileModel]] = relationship(lazy="joined")

    # Targets in business minutes
    response_target_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    resolve_target_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=480)
    resolve_after_response_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Thresholds as percentage of target consumed
    near_breach_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_NEAR_BREACH_PERCENT)
    past_breach_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_PAST_BREACH_PERCENT)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class CustomerCompanyModel(Base):
    """Customer company with its contract SLA."""
    __tablename__ = "customer_companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sla_definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True
    )
    # Legacy free-text SLA level, matched against definition names
    sla_level: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class CustomerModel(Base):
    """Requester's customer record; may carry a per-user SLA override."""
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    customer_company_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customer_companies.id", ondelete="SET NULL"), nullable=True
    )
    sla_override_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True, index=True
    )


class CategorySLAMappingModel(Base):
    """Ticket category (stored lower-case) to SLA definition."""
    __tablename__ = "category_sla_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    sla_definition_id: Mapped[int] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="RESTRICT"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CMDBItemModel(Base):
    """Configuration item; only its SLA link matters here."""
    __tablename__ = "cmdb_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sla_definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True
    )


class TicketModel(Base):
    """
    SLA columns of the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Open", index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    # Linkage consulted by SLA resolution
    requester_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cmdb_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cmdb_items.id", ondelete="SET NULL"), nullable=True
    )
    sla_override_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True
    )

    # Resolution outcome
    sla_definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    sla_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolve_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Lifecycle
    first_responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Threshold markers: set once, never cleared
    notified_response_near_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notified_response_breached_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notified_response_past_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notified_resolve_near_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notified_resolve_breached_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notified_resolve_past_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class NotificationModel(Base):
    """
    Database model for Notification.

    Maps to the append-only 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
