"""
Main FastAPI Application for Hookline

Entry point for the webhook management API. The application lifespan
connects the database and runs the retry scheduler alongside the API.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from ..shared.config import Settings, get_settings
from ..shared.logging_config import LoggingConfig
from ..storage.database import db_manager, init_database, close_database
from ..webhooks.delivery import get_webhook_delivery_service
from ..webhooks.event_bus import get_webhook_event_bus
from ..webhooks.scheduler import RetryScheduler
from .routers import webhooks
from .middleware import AuthenticationMiddleware, LoggingMiddleware


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    LoggingConfig.setup_logging(
        level=settings.monitoring.log_level.value,
        format_type=settings.monitoring.log_format,
        log_file=settings.monitoring.log_file
    )
    logger.info(f"Starting {settings.app_name} ({settings.environment.value})")

    await init_database()

    scheduler: Optional[RetryScheduler] = None
    if settings.webhooks.webhook_retry_enabled:
        scheduler = RetryScheduler(
            get_webhook_delivery_service(),
            interval_seconds=settings.webhooks.webhook_retry_interval
        )
        await scheduler.start()
    app.state.retry_scheduler = scheduler

    yield

    logger.info(f"Shutting down {settings.app_name}")
    if scheduler:
        await scheduler.stop()
    await get_webhook_event_bus().drain(timeout=settings.webhooks.webhook_request_timeout)
    await close_database()


def _error_response(status_code: int, error_type: str, message: str, details: Any = None) -> JSONResponse:
    error: Dict[str, Any] = {
        "type": error_type,
        "message": message,
        "status_code": status_code
    }
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with consistent error format."""
    detail = exc.detail
    if isinstance(detail, dict):
        response = _error_response(
            exc.status_code, "http_error", detail.get("message", ""), detail.get("details")
        )
    else:
        response = _error_response(exc.status_code, "http_error", str(detail))

    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 with the individual problems."""
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return _error_response(400, "validation_error", "Invalid request", details)


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions with consistent error format."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(500, "internal_error", "An internal server error occurred")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api.api_title,
        description=settings.api.api_description,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=settings.api.cors_methods,
        allow_headers=["*"],
    )

    # Last added runs first: authentication populates the tenant for logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(AuthenticationMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health", tags=["Health"])
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        database_ok = await db_manager.health_check()
        scheduler = getattr(app.state, "retry_scheduler", None)
        return {
            "status": "healthy" if database_ok else "degraded",
            "version": settings.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "api": {"status": "healthy"},
                "database": {"status": "healthy" if database_ok else "unhealthy"},
                "retry_scheduler": {"status": "running" if scheduler and scheduler.is_running else "stopped"},
                "delivery": get_webhook_delivery_service().get_stats(),
            }
        }

    app.include_router(webhooks.router, prefix=f"/api/{settings.api.api_version}/webhooks", tags=["Webhooks"])

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
