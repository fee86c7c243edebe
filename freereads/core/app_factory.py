"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
service lifecycle) so tests can build isolated apps with their own services.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from freereads.api.routes import auth_router, health_router
from freereads.core.config import settings
from freereads.core.container import ServiceContainer, build_services, shutdown, startup
from freereads.core.exception_handlers import setup_exception_handlers
from freereads.core.logging import configure_logging
from freereads.core.middleware import request_id_middleware
from freereads.core.openapi import apply_openapi_customizations
from freereads.core.pipeline import security_pipeline_middleware

API_PREFIX = "/api/v1"


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        services: Pre-built services (tests); built from settings otherwise.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup(services)
        try:
            yield
        finally:
            await shutdown(services)

    app = FastAPI(
        title="Freereads Session Guard",
        description=(
            "Session and abuse-control core of the Freereads book-sharing API: "
            "JWT access/refresh pairs with single-use rotation, IP and token "
            "blacklisting, and tiered rate limiting with progressive delays."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Added last runs first: request id wraps the security pipeline
    app.middleware("http")(security_pipeline_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
