"""FastAPI application factory.

Creates the app with logging middleware, the webhook and operator routers,
and a lifespan that builds the sync engine on startup: database, clients,
mapping stores, dispatcher and the daily reconciliation scheduler.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.rentsync.api import health, operator, webhooks
from src.rentsync.api.middleware import LoggingMiddleware
from src.rentsync.clients.base import BackoffPolicy
from src.rentsync.clients.crm import CrmClient
from src.rentsync.clients.ops import OpsClient
from src.rentsync.config import get_settings
from src.rentsync.core.database import close_db, create_session_factory, get_engine, init_db
from src.rentsync.core.logging import configure_structlog
from src.rentsync.mapping.store import MappingRepository
from src.rentsync.observability.errors import ErrorLogger
from src.rentsync.observability.metrics import get_metrics_response
from src.rentsync.reconciliation.scheduler import ReconciliationScheduler
from src.rentsync.reconciliation.sweep import ReconciliationSweep
from src.rentsync.sync.context import SyncContext
from src.rentsync.sync.field_mapping import validate_stage_table
from src.rentsync.webhooks.dispatcher import WebhookDispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build services on startup; stop the scheduler and dispose the engine on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    # Fail fast: an order with an unmapped status would be unsyncable
    validate_stage_table()

    missing = settings.missing_credentials()
    if missing:
        log.warning("startup.missing_credentials", missing=missing)

    engine = get_engine()
    await init_db(engine)
    session_factory = create_session_factory(engine)

    error_logger = ErrorLogger(session_factory)
    backoff = BackoffPolicy(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        max_delay=settings.RETRY_MAX_DELAY_SECONDS,
    )
    crm = CrmClient(
        settings.CRM_API_TOKEN,
        settings.CRM_BASE_URL,
        backoff=backoff,
        api_call_recorder=error_logger.log_api_call,
    )
    ops = OpsClient(
        settings.OPS_API_TOKEN,
        settings.OPS_BASE_URL,
        app_url=settings.OPS_APP_URL,
        archived_project_type=settings.OPS_ARCHIVED_PROJECT_TYPE,
        backoff=backoff,
        api_call_recorder=error_logger.log_api_call,
    )

    ctx = SyncContext.from_settings(settings, crm, ops, MappingRepository(session_factory))
    dispatcher = WebhookDispatcher.from_context(
        ctx, error_logger, integration_user_id=settings.OPS_INTEGRATION_USER_ID
    )
    sweep = ReconciliationSweep(ctx, dispatcher.deals, dispatcher.orders, error_logger)

    app.state.engine = engine
    app.state.error_logger = error_logger
    app.state.sync_context = ctx
    app.state.dispatcher = dispatcher
    app.state.sweep = sweep
    app.state.scheduler = None

    if settings.RECONCILIATION_ENABLED:
        scheduler = ReconciliationScheduler(
            sweep,
            hour=settings.RECONCILIATION_CRON_HOUR,
            minute=settings.RECONCILIATION_CRON_MINUTE,
        )
        if scheduler.start():
            app.state.scheduler = scheduler
        else:
            log.warning("startup.reconciliation_scheduler_unavailable")

    log.info("startup.complete", environment=settings.ENVIRONMENT.value)

    yield

    if app.state.scheduler is not None:
        app.state.scheduler.stop()
    await close_db()
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="rentsync",
        version="0.1.0",
        description="Bidirectional sync between the CRM and the rental operations platform",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(operator.router)

    # Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
