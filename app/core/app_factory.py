"""Application factory for FastAPI app.

Centralizes app construction (lifespan, middleware, handlers, routers) so
tests can build isolated app instances with their own limiter.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.api.routes import admin_router, health_router, rate_limit_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_rate_limiter

logger = logging.getLogger(__name__)


def create_app(rate_limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Pre-built limiter to use instead of selecting one from
            settings at startup. The app still closes it on shutdown.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        limiter = rate_limiter if rate_limiter is not None else await build_rate_limiter()
        app.state.rate_limiter = limiter
        try:
            yield
        finally:
            await limiter.close()
            logger.info("rate_limit.limiter_closed", extra={"backend": limiter.backend_name})

    app = FastAPI(
        title="Request Throttle API",
        description=(
            "Per-caller request rate limiting shared across instances through "
            "Redis, with an in-process fallback when Redis is not configured."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
