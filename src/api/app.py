"""FastAPI application factory and configuration.

Main application entry point with lifespan management, middleware,
and router registration.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src import __version__
from src.api.chat import router as chat_router
from src.api.files import router as files_router
from src.api.threads import router as threads_router
from src.assistant.client import close_assistant_client
from src.assistant.config import get_relay_config, log_config_warnings
from src.models.schemas import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown lifecycle.

    Reports missing configuration on startup and releases the upstream
    connection pool on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application while it runs.
    """
    # Startup
    logger.info("Starting ecoSure relay API...")
    log_config_warnings(get_relay_config())
    yield
    # Shutdown
    logger.info("Shutting down ecoSure relay API...")
    await close_assistant_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="ecoSure Relay API",
        description=(
            "Thin relay between the ecoSure browser client and a hosted assistant. "
            "Streams answers as server-sent events, lists normalized thread "
            "messages and proxies stored files."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(chat_router)
    application.include_router(threads_router)
    application.include_router(files_router)

    @application.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Check service health status."""
        return HealthResponse()

    return application


app = create_app()
