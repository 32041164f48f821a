"""Application factory for the FastAPI app.

Centralizes app construction (store, middleware, handlers, routers) so tests
can build isolated applications, each with its own rate limit store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.base import RateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.api.routes import health_router, rate_limit_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware

logger = logging.getLogger(__name__)


def build_rate_limit_store() -> RateLimitStore:
    """Create the process-wide store from settings."""

    return InMemoryRateLimitStore(
        sweep_interval_seconds=settings.app.rate_limit_sweep_interval_seconds,
    )


def create_app(store: RateLimitStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        store: Rate limit store to use; one is built from settings when omitted.
            The application closes the store on shutdown either way.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    rate_limit_store = store if store is not None else build_rate_limit_store()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            app.state.rate_limit_store.close()
            logger.info("app.shutdown")

    app = FastAPI(
        title="Rate Limiter API",
        description=(
            "Fixed-window, per-key rate limiting service. Exposes explicit "
            "checks for delegating hosts and throttles its own routes with "
            "X-RateLimit-* and Retry-After headers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.rate_limit_store = rate_limit_store

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    return app
