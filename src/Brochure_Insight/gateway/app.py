"""FastAPI application factory for the brochure insight gateway."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI

from Brochure_Insight import __version__
from Brochure_Insight.config.settings import AppSettings, get_settings
from Brochure_Insight.observability.metrics import register_metrics
from Brochure_Insight.utils.logging import configure_logging, configure_tracing

from .rest import router as rest_router
from .services import IntakeService, build_intake_service
from .sse import router as sse_router

logger = structlog.get_logger(__name__)

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


def create_app(
    settings: AppSettings | None = None,
    *,
    service: IntakeService | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Application settings; defaults to :func:`get_settings`.
        service: Pre-built intake service. Tests inject one wired with fakes.
    """
    settings = settings or get_settings()
    configure_logging(settings=settings.observability.logging)
    if settings.telemetry.enabled:
        configure_tracing(settings.service_name, settings.telemetry)

    intake_service = service or build_intake_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("gateway.startup", environment=settings.environment.value)
        try:
            yield
        finally:
            await intake_service.aclose()
            logger.info("gateway.shutdown")

    app = FastAPI(title="Brochure Insight Gateway", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.intake_service = intake_service

    app.include_router(health_router)
    app.include_router(rest_router)
    app.include_router(sse_router)
    if settings.observability.metrics.enabled:
        register_metrics(app, settings.observability.metrics.path)
    return app


__all__ = ["create_app"]
