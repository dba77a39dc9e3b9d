"""
Civic Desk - Main Application
=============================

Complaint lifecycle engine for municipal issue reporting.

Modules:
- Complaints: intake, auto-assignment, status transitions, SLA escalation

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, state machine, matcher, SLA calculator
- Infrastructure: Database, config watcher, notifications, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from civicdesk.config import Settings, settings as default_settings
from civicdesk.core import ApplicationException

# Infrastructure
from civicdesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# Complaint module
from civicdesk.complaints.application import (
    ComplaintLifecycleService,
    EscalationService,
    IComplaintStore,
    INotificationDispatcher,
)
from civicdesk.complaints.infrastructure import (
    EscalationScheduler,
    LifecycleConfigManager,
    SQLAlchemyComplaintStore,
    build_dispatcher,
)
from civicdesk.complaints.interfaces import complaints_router

# Shared
from civicdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from civicdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    store: Optional[IComplaintStore] = None,
    dispatcher: Optional[INotificationDispatcher] = None,
    config_manager: Optional[LifecycleConfigManager] = None,
    clock=None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators may be injected (tests pass an in-memory store and a
    recording dispatcher); anything omitted is built from settings during
    startup.
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Initialize database and create tables (unless a store is injected)
        3. Load lifecycle configuration and start watching it
        4. Build services
        5. Start the escalation scheduler

        SHUTDOWN:
        1. Stop the escalation scheduler (waits for the in-flight cycle)
        2. Stop config watcher
        3. Close notification dispatcher and database connections
        """
        # === STARTUP ===
        setup_logging(cfg.log_level, cfg.environment)
        logger.info("Starting Civic Desk", extra={
            "version": cfg.app_version,
            "environment": cfg.environment
        })

        complaint_store = store
        owns_database = complaint_store is None
        if owns_database:
            logger.info("Initializing database")
            init_database(cfg.database_url)
            await create_tables()
            complaint_store = SQLAlchemyComplaintStore(get_session_maker())

        manager = config_manager
        if manager is None:
            manager = LifecycleConfigManager()
            manager.load(cfg.lifecycle_config_path)
            manager.start_watching()

        notifier = dispatcher or build_dispatcher(cfg.notification_webhook_url)

        service_kwargs = {
            "store_timeout": cfg.store_timeout_seconds,
            "notification_timeout": cfg.notification_timeout_seconds,
            "conflict_retries": cfg.escalation_conflict_retries,
        }
        if clock is not None:
            service_kwargs["clock"] = clock

        app.state.lifecycle_service = ComplaintLifecycleService(
            complaint_store, notifier, manager, **service_kwargs
        )
        app.state.escalation_service = EscalationService(
            complaint_store, notifier, manager, **service_kwargs
        )
        app.state.config_manager = manager

        scheduler = None
        if cfg.escalation_interval_seconds > 0:
            scheduler = EscalationScheduler(
                app.state.escalation_service,
                interval_seconds=cfg.escalation_interval_seconds,
                shutdown_timeout=cfg.scheduler_shutdown_timeout_seconds,
            )
            await scheduler.start()
        else:
            logger.info("Escalation scheduler disabled")
        app.state.scheduler = scheduler

        logger.info("Civic Desk started successfully")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down Civic Desk")

        if scheduler:
            await scheduler.stop()

        manager.stop_watching()

        close = getattr(notifier, "close", None)
        if close is not None:
            await close()

        if owns_database:
            await close_database()

        logger.info("Civic Desk shutdown complete")

    app = FastAPI(
        title="Civic Desk API",
        description="""
        ## Civic Complaint Lifecycle Engine

        Citizens report municipal issues; complaints are auto-assigned to
        staff by city and profession, tracked against an SLA deadline and
        escalated by a background cycle when the deadline passes.

        **Lifecycle:** `OPEN -> IN_PROGRESS -> ESCALATED -> RESOLVED`
        (`OPEN -> ESCALATED` and `IN_PROGRESS -> RESOLVED` also allowed).

        **Escalation cycle:** every 15 minutes by default. At 75% of the SLA
        window the assignee is warned; at 100% the complaint is escalated and
        reporter and assignee are notified.
        """,
        version=cfg.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(complaints_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "lifecycle_config": "2024.1",
                            "escalation_scheduler": "running"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports the loaded lifecycle config version and scheduler state.
        """
        scheduler = getattr(request.app.state, "scheduler", None)
        manager = getattr(request.app.state, "config_manager", None)
        checks = {
            "lifecycle_config": manager.get_config().version if manager else "not_loaded",
            "escalation_scheduler": (
                "running" if scheduler and scheduler.is_running
                else "disabled" if cfg.escalation_interval_seconds == 0
                else "stopped"
            ),
        }
        return {
            "status": "healthy",
            "version": cfg.app_version,
            "environment": cfg.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Civic Desk",
            "version": cfg.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "complaints": {
                    "endpoints": [
                        "POST /complaints - Submit a complaint",
                        "GET /complaints - List complaints",
                        "GET /complaints/summary - Public summary",
                        "GET /complaints/{id} - Get complaint",
                        "GET /complaints/{id}/sla - Get SLA position",
                        "POST /complaints/{id}/transition - Change status",
                        "POST /complaints/{id}/assign - Assign staff",
                        "POST /staff - Register staff",
                        "GET /staff?city= - List staff in a city",
                        "POST /escalations/run - Run escalation cycle"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "civicdesk.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.environment == "development",
        log_level="info"
    )
