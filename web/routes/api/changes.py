"""Change history and audit log."""
from typing import Optional

from fastapi import APIRouter, Query, Request

from synchub.models import ChangeRecord
from web.config import ADMIN_RATE_LIMIT
from web.schemas import ChangesResponse
from ._deps import limiter, get_services

router = APIRouter()


def _change_response(record: ChangeRecord) -> dict:
    return {
        "id": record.id,
        "entityType": record.entity_type,
        "nativeId": record.native_id,
        "changeType": record.change_type.value,
        "fieldName": record.field_name,
        "oldValue": record.old_value,
        "newValue": record.new_value,
        "fullSnapshot": record.full_snapshot,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


@router.get("/changes", response_model=ChangesResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_changes(
    request: Request,
    entityType: Optional[str] = Query(None, description="Qualified type, e.g. procore.projects"),
    nativeId: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    """Recent change records, newest first."""
    records = await get_services(request).audit.list_changes(entityType, nativeId, limit)
    return {"changes": [_change_response(r) for r in records]}


@router.get("/audit")
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_audit_logs(
    request: Request,
    status: Optional[str] = Query(None, description="success, error or skipped"),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    """Recent audit-log rows."""
    rows = await get_services(request).sink.recent(limit=limit, status=status, action=action)
    return {"logs": rows}
