"""Attendance Portal — FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from attendance_portal.attendance.router import router as attendance_router
from attendance_portal.common.exceptions import register_exception_handlers
from attendance_portal.common.rate_limit import limiter
from attendance_portal.config import settings
from attendance_portal.dependencies import location_registry
from attendance_portal.geofence.router import router as settings_router
from attendance_portal.offpremises.router import router as offpremises_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: logging. Shutdown: flush buffered GPS batches."""
    configure_logging()
    logger.info("Attendance portal starting (environment=%s)", settings.ENVIRONMENT)
    yield
    await location_registry.close()
    logger.info("Attendance portal stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Attendance Portal",
        description="Geofenced check-in/out with supervised off-premises approval",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    app.include_router(attendance_router, prefix="/api/v1/attendance")
    app.include_router(offpremises_router, prefix="/api/v1/offpremises")
    app.include_router(settings_router, prefix="/api/v1/settings")

    return app


app = create_app()
