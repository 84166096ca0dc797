"""Main application entrypoint for StreamVault."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from streamvault.api.dependencies import Services
from streamvault.api.errors import register_exception_handlers
from streamvault.api.v1 import routes_health
from streamvault.api.v1.routes_browse import router as browse_router
from streamvault.api.v1.routes_files import router as files_router
from streamvault.api.v1.routes_stream import router as stream_router
from streamvault.api.v1.routes_upload import router as upload_router
from streamvault.core.config import settings
from streamvault.core.logging import setup_logging
from streamvault.core.middleware import HTTPErrorLoggingMiddleware

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built service container. When omitted the container is
            built from settings at startup and closed at shutdown.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or Services.from_settings(settings)
        logger.info(
            "StreamVault starting",
            extra={"env": settings.ENV, "bucket": settings.B2_BUCKET_NAME or None},
        )
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            logger.info("StreamVault shutting down")

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(HTTPErrorLoggingMiddleware)
    register_exception_handlers(app)

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_health.router, prefix="/api/v1", tags=["health"])
    app.include_router(browse_router)
    app.include_router(stream_router)
    app.include_router(files_router)
    app.include_router(upload_router)

    return app


# Export app instance for ASGI servers
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
