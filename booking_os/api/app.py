"""FastAPI application for BookingOS."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_os import __version__
from booking_os.api.middleware import RequestLoggingMiddleware
from booking_os.api.routes import appointments, availability, change_requests, health, schedules
from booking_os.config import get_settings
from booking_os.core.database import init_db
from booking_os.scheduling.locks import SchedulingBusyError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting BookingOS API")
    await init_db()
    yield
    logger.info("Shutting down BookingOS API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BookingOS API",
        description="Multi-tenant appointment scheduling engine",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(availability.router, prefix="/api/v1", tags=["availability"])
    app.include_router(appointments.router, prefix="/api/v1", tags=["appointments"])
    app.include_router(schedules.router, prefix="/api/v1", tags=["schedules"])
    app.include_router(change_requests.router, prefix="/api/v1", tags=["change-requests"])

    @app.exception_handler(SchedulingBusyError)
    async def busy_handler(request: Request, exc: SchedulingBusyError):
        logger.warning(f"Scheduling busy: {exc}")
        return JSONResponse(
            status_code=503,
            content={"error": "Scheduling busy", "detail": "Please retry shortly"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
