"""Inbound platform webhooks."""
from fastapi import APIRouter, HTTPException, Query, Request

from synchub.models import Platform
from web.config import ADMIN_RATE_LIMIT, WEBHOOK_RATE_LIMIT
from web.schemas import AckResponse
from ._deps import limiter, get_logger, get_services

router = APIRouter()
logger = get_logger(__name__)


@router.post("/webhooks/{platform}", response_model=AckResponse)
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def receive_webhook(request: Request, platform: str):
    """
    Acknowledge a platform delivery.

    Always 200 for known platforms, including duplicates and malformed
    bodies, so the platform does not retry. Work happens on the reaction queue.
    """
    try:
        source = Platform(platform)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown platform '{platform}'")

    body = await request.body()
    ack = await get_services(request).dispatcher.receive(body, source)
    return ack.to_dict()


@router.get("/webhooks/events")
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_webhook_events(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
):
    """Most recent inbound events with their processing status."""
    events = await get_services(request).store.list_webhook_events(limit=limit)
    return {"events": events}
