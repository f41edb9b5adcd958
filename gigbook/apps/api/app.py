"""FastAPI application wiring for the GigBook API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gigbook.apps.api.perf.limits.headers import RateLimitHeadersMiddleware
from gigbook.apps.api.perf.limits.rate_limiter import RateLimitExceeded, rate_limit_exceeded_handler
from gigbook.apps.api.perf.limits.tiered import TierRateLimitExceeded, tier_rate_limit_exceeded_handler
from gigbook.apps.api.perf.metrics.http_metrics import RequestMetricsMiddleware
from gigbook.apps.api.routers import admin, metrics, system, usage
from gigbook.apps.api.state import build_services
from gigbook.core.error_handler import GracefulShutdown, setup_global_exception_handler
from gigbook.core.logging import configure_logging
from gigbook.core.settings import get_settings

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build runtime services, run their sweepers, and tear everything down on exit."""
    setup_global_exception_handler()
    settings = get_settings()
    logger.info("Starting GigBook API (environment=%s)...", settings.environment)

    # Services may be injected ahead of startup; those are left open on exit.
    services = getattr(app.state, "services", None)
    owns_services = services is None
    if owns_services:
        services = await build_services(settings)
        app.state.services = services

    shutdown_manager = GracefulShutdown(timeout=15.0)
    services.start_background_tasks(shutdown_manager)

    routes = [r.path for r in app.routes if hasattr(r, "path")]
    logger.info("Application started with %d routes", len(routes))

    try:
        yield
    finally:
        logger.info("Shutting down application...")
        await shutdown_manager.shutdown()
        if owns_services:
            try:
                await services.shutdown()
            except Exception as exc:
                logger.error("Error during services shutdown: %s", exc)
            app.state.services = None
        logger.info("Application shut down complete")


def create_app() -> FastAPI:
    settings = get_settings()
    docs_url = "/docs" if settings.api_docs_enabled else None
    redoc_url = "/redoc" if settings.api_docs_enabled else None
    openapi_url = "/openapi.json" if settings.api_docs_enabled else None

    app = FastAPI(
        title="GigBook API",
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
    )
    app.state.services = None
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(RequestMetricsMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(TierRateLimitExceeded, tier_rate_limit_exceeded_handler)

    app.include_router(system.router)
    app.include_router(metrics.router)
    app.include_router(admin.router)
    app.include_router(usage.router)

    return app


app = create_app()

__all__ = ["app", "create_app", "lifespan"]
