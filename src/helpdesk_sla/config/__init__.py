"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Read once at process start; nothing mutates them afterwards.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database URL of the default tenant (async driver)"
    )
    default_tenant: str = Field(
        default="default",
        description="Tenant code served by database_url"
    )
    tenant_database_urls: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra tenants as a JSON map of tenant code to database URL"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    db_pool_timeout_seconds: float = Field(
        default=10.0,
        description="Seconds to wait for a pooled connection",
        gt=0
    )
    db_command_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single database statement (or lock wait on SQLite)",
        gt=0
    )

    # ========== SLA Configuration ==========
    sla_scheduler_enabled: bool = Field(
        default=True,
        description="Run the breach monitor inside the API process"
    )
    sla_evaluation_interval_seconds: int = Field(
        default=300,
        description="Seconds between breach monitor ticks",
        ge=10
    )
    sla_tenant_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound for a single tenant's tick",
        gt=0
    )
    sla_seed_path: Path = Field(
        default=Path("sla_seed.yaml"),
        description="YAML catalog of default business hours profiles and SLA definitions"
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notification delivery"
    )
    slack_channel: str = Field(
        default="#sla-alerts",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    notification_drain_enabled: bool = Field(
        default=False,
        description="Drain undelivered notifications to Slack on every tick"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def tenants(self) -> Dict[str, str]:
        """All tenant codes mapped to their database URLs."""
        urls = {self.default_tenant: self.database_url}
        urls.update(self.tenant_database_urls)
        return urls


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses as stored by the ticket subsystem."""
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    PENDING = "Pending"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class SLASource(str, Enum):
    """Configuration layer that supplied a ticket's SLA."""
    TICKET = "ticket"
    CUSTOMER = "customer"
    CATEGORY = "category"
    CMDB = "cmdb"
    DEFAULT = "default"


class SLAPhase(str, Enum):
    """The two SLA clocks."""
    RESPONSE = "response"
    RESOLVE = "resolve"


class TicketPhase(str, Enum):
    """Where a ticket is in its SLA lifecycle."""
    AWAITING_RESPONSE = "awaiting_response"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class ThresholdLevel(str, Enum):
    """Threshold levels, in the order a ticket crosses them."""
    NEAR = "near"
    BREACHED = "breached"
    PAST = "past"


class Severity(str, Enum):
    """Notification severities."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SLAState(str, Enum):
    """Per-phase SLA state reported to callers."""
    PENDING = "pending"
    ON_TRACK = "on_track"
    NEAR_BREACH = "near_breach"
    BREACHED = "breached"
    MET = "met"
    NO_SLA = "no_sla"


# ========== Lists for validation ==========

CLOSED_STATUSES = [TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value]
VALID_SEVERITIES = [s.value for s in Severity]

DEFAULT_NEAR_BREACH_PERCENT = 85
DEFAULT_PAST_BREACH_PERCENT = 120

MAX_NOTIFICATION_PAGE = 200
DEFAULT_NOTIFICATION_PAGE = 50
MAX_BULK_DELIVERED = 100
