"""FastAPI application initialization and configuration."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import health_router, search_stream_router
from src.config.logging_config import configure_logging
from src.config.settings import get_settings
from src.resilience.services import ServiceContainer
from src.workflow.factory import OrchestratorFactory

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    Builds the service container unless one was injected, and closes it on shutdown
    when it was built here.
    """
    # Startup
    settings = getattr(app.state, "settings", None) or get_settings()
    configure_logging(
        debug_mode=settings.debug_mode,
        log_level=None if settings.debug_mode else settings.log_level,
        json_logs=settings.log_json,
    )
    logger.info("Starting up answer engine API...")

    services = getattr(app.state, "services", None)
    owns_services = services is None
    if owns_services:
        services = ServiceContainer.from_settings(settings)

    app.state.settings = services.settings
    app.state.services = services
    app.state.orchestrator_factory = OrchestratorFactory(services)

    logger.info(
        "Answer engine API started successfully",
        available_modes=[mode["mode"] for mode in app.state.orchestrator_factory.get_available_modes()],
    )

    yield

    # Shutdown
    logger.info("Shutting down answer engine API...")
    if owns_services:
        await services.aclose()
    logger.info("Answer engine API shutdown complete")


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Create and configure FastAPI application."""

    app = FastAPI(
        title="Answer Engine API",
        description="Search orchestration with streamed progress, sources and cited answers",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services
        app.state.settings = services.settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(search_stream_router)

    logger.info("FastAPI app created")

    return app


# Create app instance
app = create_app()
