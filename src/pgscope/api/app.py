"""
FastAPI application factory.

``create_app()`` builds the observability pipeline from settings, wires the
request-context middleware and the log-control router, and starts/stops the
resource sampler with the application lifespan.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from pgscope import __version__
from pgscope.api.middleware.errors import pgscope_error_handler
from pgscope.api.middleware.request_context import RequestContextMiddleware
from pgscope.core.errors import PgscopeError
from pgscope.core.settings import LoggingSettings, get_settings
from pgscope.framework.logging.config import Observability, build_observability, configure_logging

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup / shutdown hooks."""
    log = structlog.get_logger("pgscope.api")
    obs: Observability = app.state.observability

    obs.start()
    log.info("pgscope_api_starting", version=app.version, sampler=obs.sampler.is_running)
    yield
    obs.shutdown()
    log.info("pgscope_api_stopped")


def create_app(
    *,
    settings: LoggingSettings | None = None,
    observability: Observability | None = None,
    configure: bool = True,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : LoggingSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    observability : Observability | None
        Pre-built pipeline, e.g. one writing to a ``MemorySink``.
    configure : bool
        Install the structlog/stdlib logging configuration.
    """
    settings = settings or (observability.settings if observability else get_settings())
    if configure:
        configure_logging(settings)
    obs = observability or build_observability(settings)

    app = FastAPI(
        title="pgscope",
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{API_PREFIX}/docs",
        openapi_url=f"{API_PREFIX}/openapi.json",
    )

    # Stash the pipeline on app state for routers
    app.state.settings = settings
    app.state.observability = obs

    # ── Middleware ───────────────────────────────────────────────────
    app.add_middleware(
        RequestContextMiddleware,
        propagator=obs.propagator,
        dispatcher=obs.dispatcher,
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(PgscopeError, pgscope_error_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from pgscope.api.routers import logging as logging_router

    app.include_router(logging_router.router, prefix=API_PREFIX, tags=["logging"])

    return app
