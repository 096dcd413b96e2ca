"""
Helpdesk SLA Engine - Main Application
=======================================

SLA resolution, business-hours deadlines and breach notifications for a
multi-tenant helpdesk.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, calculators and the SLA resolver
- Infrastructure: Database, scheduler, Slack delivery
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from helpdesk_sla.config import settings

# Infrastructure
from helpdesk_sla.infrastructure.database import (
    close_database,
    create_tables,
    get_engine,
    get_session_context,
    get_tenant_codes,
    init_database,
)

# SLA Module
from helpdesk_sla.sla.application import BreachMonitorService, NotificationService
from helpdesk_sla.sla.infrastructure import (
    SLAScheduler,
    SlackClient,
    SlackNotificationDispatcher,
    YAMLSeedLoader,
    tenant_scope,
)
from helpdesk_sla.sla.interfaces import sla_router

# Shared
from helpdesk_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger(__name__)


async def prepare_tenants() -> None:
    """
    Create tables and seed the default SLA catalog for every tenant.

    A tenant whose database is unreachable is logged and skipped; its
    endpoints fail until it comes back.
    """
    seed_loader = YAMLSeedLoader(settings.sla_seed_path)
    for tenant in get_tenant_codes():
        try:
            with log_latency(logger, "tenant_prepare", tenant=tenant):
                await create_tables(get_engine(tenant))
                async with get_session_context(tenant) as session:
                    created = await seed_loader.seed(session)
            logger.info("Tenant ready", extra={"tenant": tenant, **created})
        except Exception as e:
            logger.warning(
                f"Tenant database not available - running degraded: {e}",
                extra={"tenant": tenant}
            )


def build_dispatchers(slack_client: SlackClient) -> Dict[str, SlackNotificationDispatcher]:
    if not (settings.notification_drain_enabled and slack_client.is_configured):
        return {}
    return {
        tenant: SlackNotificationDispatcher(
            tenant, NotificationService(tenant, tenant_scope(tenant)), slack_client
        )
        for tenant in get_tenant_codes()
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize one database engine per tenant
    3. Create tables and seed default SLA definitions
    4. Start the SLA scheduler (unless SLA_SCHEDULER_ENABLED=false)

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Close Slack client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    await prepare_tenants()

    slack_client = SlackClient()
    sla_scheduler: Optional[SLAScheduler] = None
    if settings.sla_scheduler_enabled:
        sla_scheduler = SLAScheduler(
            interval_seconds=settings.sla_evaluation_interval_seconds,
            tenant_timeout_seconds=settings.sla_tenant_timeout_seconds,
        )
        monitors = {
            tenant: BreachMonitorService(tenant, tenant_scope(tenant))
            for tenant in get_tenant_codes()
        }
        await sla_scheduler.start(monitors, build_dispatchers(slack_client))
    else:
        logger.info("In-process SLA scheduler disabled; run helpdesk_sla.worker instead")

    app.state.settings = settings
    app.state.sla_scheduler = sla_scheduler

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA service")
    if sla_scheduler:
        await sla_scheduler.stop()
    await slack_client.close()
    await close_database()
    logger.info("SLA service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA API",
    description="""
    ## Helpdesk SLA Engine

    - Resolves each ticket's SLA from ticket, customer, category, CMDB and
      tenant-default layers
    - Computes response and resolve deadlines in business hours
    - Records near / breached / past-breach crossings once per ticket
    - Serves the notification log to delivery workers
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Added last runs first: correlation id must exist before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(sla_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for load balancers and orchestrators.
    """
    sla_scheduler = getattr(app.state, "sla_scheduler", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "tenants": get_tenant_codes(),
            "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
