"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk_sla.config import (
    DEFAULT_NOTIFICATION_PAGE,
    MAX_BULK_DELIVERED,
    MAX_NOTIFICATION_PAGE,
    VALID_SEVERITIES,
)


# ========== Type Aliases for Literals ==========
SeverityStr = Literal["info", "warning", "critical"]
SLASourceStr = Literal["ticket", "customer", "category", "cmdb", "default"]
SLAStateStr = Literal["pending", "on_track", "near_breach", "breached", "met", "no_sla"]
TicketPhaseStr = Literal["awaiting_response", "in_progress", "resolved"]


# ========== Request DTOs ==========

class NotificationQueryDTO(BaseModel):
    """
    Filters for the notification listing.

    limit and offset are clamped rather than rejected; an unknown severity
    is ignored.
    """
    severity: Optional[str] = None
    type: Optional[str] = None
    delivered: Optional[bool] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    ticket_id: Optional[int] = None
    limit: int = DEFAULT_NOTIFICATION_PAGE
    offset: int = 0

    @field_validator("severity")
    @classmethod
    def drop_unknown_severity(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v not in VALID_SEVERITIES:
            return None
        return v

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, v: int) -> int:
        if v < 1:
            return DEFAULT_NOTIFICATION_PAGE if v == 0 else 1
        return min(v, MAX_NOTIFICATION_PAGE)

    @field_validator("offset")
    @classmethod
    def clamp_offset(cls, v: int) -> int:
        return max(v, 0)


class BulkDeliveredRequest(BaseModel):
    """Request body for marking several notifications delivered."""
    ids: List[int] = Field(..., description=f"Notification ids, at most {MAX_BULK_DELIVERED}")


class FirstResponseRequest(BaseModel):
    """Request body for recording a ticket's first response."""
    responded_at: Optional[datetime] = Field(None, description="Defaults to now")


# ========== Response DTOs ==========

class NotificationResponse(BaseModel):
    """Response model for one notification row."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    type: str
    severity: SeverityStr
    message: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class NotificationListResponse(BaseModel):
    """Page of notifications, newest first."""
    total: int = Field(..., description="Rows matching the filters")
    limit: int
    offset: int
    items: List[NotificationResponse] = Field(default_factory=list)


class DeliveredResponse(BaseModel):
    id: int
    delivered_at: datetime


class BulkDeliveredResponse(BaseModel):
    updated_count: int = Field(..., description="Rows newly marked delivered")


class PhaseStatusResponse(BaseModel):
    """Status of one SLA clock."""
    state: SLAStateStr
    anchor: Optional[datetime] = None
    due_at: Optional[datetime] = None
    target_minutes: int = 0
    elapsed_business_minutes: int = 0
    percent_used: int = 0
    remaining_minutes: Optional[int] = Field(
        None,
        description="Business minutes to the deadline; negative once overdue, null unless the clock is running"
    )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: int
    status: str
    sla_definition_id: Optional[int] = None
    sla_name: Optional[str] = None
    sla_source: Optional[SLASourceStr] = None
    response_due_at: Optional[datetime] = None
    resolve_due_at: Optional[datetime] = None
    first_responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    sla_phase: TicketPhaseStr
    outside_business_hours: bool = False
    timezone: str = "UTC"

    response: PhaseStatusResponse
    resolve: PhaseStatusResponse
    notified: Dict[str, Optional[datetime]] = Field(
        default_factory=dict,
        description="Threshold marker per notification type"
    )


class MonitorRunResponse(BaseModel):
    """Summary of one breach monitor tick."""
    tenant: str
    tickets_scanned: int
    notifications_created: int
    errors: int
    duration_ms: float
