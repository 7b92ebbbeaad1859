"""
FastAPI web application for the sync hub.

Exposes webhook intake, poll job automation, mapping management and
change history. The engine's services are built once per app and stored
on ``app.state.services``; tests pass their own to ``create_app``.
"""
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from synchub.config import validate_config, ConfigurationError
from synchub.events import SyncEvent
from synchub.observability import setup_logging, get_logger, metrics
from synchub.services import Services, build_services
from web.config import VERSION
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from web.routes.api import router as api_router
from web.routes.api._deps import limiter

# Configure structured logging
# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
log_format = os.getenv("LOG_FORMAT", "text")
log_level = os.getenv("LOG_LEVEL", "INFO")
setup_logging(level=log_level, json_format=(log_format == "json"))
logger = get_logger(__name__)


def _register_event_handlers(services: Services) -> None:
    """Register handlers for engine events."""

    @services.bus.on(SyncEvent.JOB_COMPLETED)
    async def on_job_completed(data: dict):
        metrics.record_timing(f"job:{data.get('job_name')}", data.get("duration_ms", 0))

    @services.bus.on(SyncEvent.JOB_FAILED)
    async def on_job_failed(data: dict):
        metrics.record_error(f"job_failed:{data.get('job_name')}")

    @services.bus.on(SyncEvent.JOB_DISABLED)
    async def on_job_disabled(data: dict):
        logger.error(
            f"Job {data.get('job_name')} disabled ({data.get('reason')}); "
            f"re-enable via /automation/{data.get('job_name')}/config once credentials are fixed"
        )


def create_app(services: Optional[Services] = None, run_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built engine services (defaults to production wiring)
        run_scheduler: Start job timers on startup (tests usually disable)
    """
    app = FastAPI(
        title="SyncHub",
        description="Procore / HubSpot / CompanyCam sync and reconciliation",
        version=VERSION,
        default_response_class=ORJSONResponse,
    )

    app.state.limiter = limiter
    app.state.services = services or build_services()

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "detail": "Too many requests. Please try again later.",
                "retry_after": exc.detail,
            }
        )

    # Logging must wrap the timeout middleware so correlation_id is set when a timeout fires
    app.add_middleware(RequestTimeoutMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(api_router)

    @app.on_event("startup")
    async def startup_event():
        logger.info("SyncHub starting...")

        # Missing platform credentials are not fatal: affected jobs self-disable
        try:
            validate_config(require_platforms=False)
        except ConfigurationError as e:
            logger.critical(f"Configuration error: {e}")
            raise SystemExit(1)

        try:
            validate_config()
        except ConfigurationError as e:
            logger.warning(f"Running with incomplete platform credentials:\n{e}")

        await app.state.services.start(run_scheduler=run_scheduler)
        _register_event_handlers(app.state.services)

        stats = await app.state.services.store.get_stats()
        logger.info(
            f"SyncHub ready: {stats['remote_entities']} mirrored entities, "
            f"{stats['entity_mappings']} mappings"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        try:
            await app.state.services.stop()
        except Exception as e:
            logger.warning(f"Error stopping services: {e}")
        logger.info("SyncHub stopped")

    return app


app = create_app()
