"""
Ticket Triage - Main Application
==================================

Event-driven triage engine for support tickets.

Modules:
- Triage: analyze new tickets, assign a moderator, notify, refresh and backfill

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Workflow engine, services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, email delivery
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import init_database, close_database, create_tables, get_session_maker
from src.infrastructure.llm import ILLMClient, OpenAILLMClient, MockLLMClient

# Triage Module
from src.triage.application import ClassificationService, TriageWorkflowEngine, TriageDispatcher
from src.triage.infrastructure import EmailNotifier, SQLAlchemyTicketStore, SQLAlchemyUserDirectory
from src.triage.interfaces import triage_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def build_llm_client() -> Optional[ILLMClient]:
    """
    Pick the classifier oracle.

    No client at all is a valid setup: every ticket then goes through
    the rule-based fallback.
    """
    if settings.openai_api_key:
        return OpenAILLMClient(settings.openai_api_key)
    if settings.mock_llm:
        logger.info("Using mock LLM client")
        return MockLLMClient()
    logger.warning("LLM not configured - tickets will be classified by rules only")
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Initialize LLM client and email notifier
    4. Wire the workflow engine and dispatcher

    SHUTDOWN:
    1. Wait for in-flight workflow runs
    2. Close notifier and LLM clients
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Ticket Triage", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    llm_client = build_llm_client()
    notifier = EmailNotifier(backoff_seconds=settings.step_retry_backoff_seconds)

    session_maker = get_session_maker()
    ticket_store = SQLAlchemyTicketStore(session_maker)
    user_directory = SQLAlchemyUserDirectory(session_maker)

    engine = TriageWorkflowEngine(
        ticket_store=ticket_store,
        user_directory=user_directory,
        classifier=ClassificationService(llm_client),
        notifier=notifier
    )
    dispatcher = TriageDispatcher(engine, ticket_store)

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.llm_client = llm_client
    app.state.dispatcher = dispatcher

    logger.info("Ticket Triage started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Ticket Triage", extra={"in_flight": dispatcher.pending})

    await dispatcher.drain(timeout=30)
    await notifier.close()
    if isinstance(llm_client, OpenAILLMClient):
        await llm_client.close()
    await close_database()

    logger.info("Ticket Triage shutdown complete")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    application = FastAPI(
        title="Ticket Triage API",
        description="""
        ## Event-driven triage for support tickets

        **Endpoints:**
        - `POST /triage/events` - Trigger `ticket-created`, `ticket-refresh` or `user-signup`
        - `POST /triage/tickets/{id}/refresh` - Re-run analysis and assignment for a ticket
        - `POST /triage/backfill` - Refresh every ticket missing priority, assignee or notes

        Runs proceed in the background; each step is retried within its budget
        and completed steps are never repeated.
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last so it runs first and LoggingMiddleware sees the ID
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(CorrelationIDMiddleware)
    application.add_exception_handler(ApplicationException, application_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)

    application.include_router(triage_router)

    @application.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        dispatcher = getattr(request.app.state, "dispatcher", None)
        checks = {
            "workflow_engine": "running" if dispatcher else "not_initialized",
            "llm_client": "available" if getattr(request.app.state, "llm_client", None) else "rules_only",
            "in_flight_runs": dispatcher.pending if dispatcher else 0
        }
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @application.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "triage": {
                    "prefix": "/triage",
                    "endpoints": [
                        "POST /triage/events - Trigger a workflow run",
                        "POST /triage/tickets/{id}/refresh - Refresh a ticket",
                        "POST /triage/backfill - Refresh under-enriched tickets"
                    ]
                }
            }
        }

    return application


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
