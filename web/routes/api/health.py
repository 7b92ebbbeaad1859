"""Health check and metrics endpoints."""
import time

from fastapi import APIRouter, Request

from synchub.observability import get_correlation_id, metrics, Timer
from web.config import VERSION
from web.schemas import HealthResponse
from ._deps import limiter, get_logger, get_services, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    services = get_services(request)
    uptime_seconds = int(time.time() - START_TIME)

    db_latency_ms = None
    try:
        with Timer("health_check_db") as timer:
            store_stats = await services.store.get_stats()
        store_status = "connected"
        db_latency_ms = round(timer.elapsed_ms, 2)
    except Exception as e:
        logger.warning(f"Health check store query failed: {e}")
        store_stats = None
        store_status = f"error: {e}"

    return {
        "status": "healthy" if store_stats is not None else "degraded",
        "version": VERSION,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "duckdb": {
            "status": store_status,
            "latency_ms": db_latency_ms,
            **(store_stats or {}),
        },
        "scheduler_running": services.scheduler.is_running,
        "reaction_queue_size": services.queue.qsize(),
    }


@router.get("/metrics")
@limiter.limit("60/minute")
async def get_metrics_endpoint(request: Request):
    """Get application metrics."""
    return {
        "uptime_seconds": int(time.time() - START_TIME),
        "correlation_id": get_correlation_id(),
        **metrics.get_stats(),
    }
