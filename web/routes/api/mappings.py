"""Cross-platform mappings: list, unmatched, manual link, reconcile, unlink."""
from fastapi import APIRouter, HTTPException, Query, Request

from synchub.exceptions import MappingNotFoundError
from synchub.jobs import run_reconcile
from synchub.matcher import MatchRule, RULES
from synchub.models import EntityMapping, RemoteEntity
from synchub.reconciler import POLICIES
from web.config import ADMIN_RATE_LIMIT
from web.schemas import MappingResponse, MappingsResponse, ManualLinkRequest, UnmatchedResponse
from ._deps import limiter, get_logger, get_services

router = APIRouter(prefix="/mappings")
logger = get_logger(__name__)


def _rule_or_404(pair: str) -> MatchRule:
    rule = RULES.get(pair)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Unknown pair '{pair}'")
    return rule


def _mapping_response(mapping: EntityMapping) -> dict:
    return {
        "id": mapping.id,
        "idsByPlatform": mapping.ids_by_platform,
        "namesByPlatform": mapping.names_by_platform,
        "matchType": mapping.match_type.value,
        "conflicts": [c.to_dict() for c in mapping.conflicts],
        "updatedFields": mapping.updated_fields,
        "lastSyncAt": mapping.last_sync_at.isoformat() if mapping.last_sync_at else None,
        "lastSyncStatus": mapping.last_sync_status.value,
    }


def _unmatched_entity(entity: RemoteEntity, name_field: str) -> dict:
    return {"nativeId": entity.native_id, "name": entity.get(name_field), "fields": entity.fields}


@router.get("", response_model=MappingsResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_mappings(request: Request, pair: str = Query("procore_hubspot")):
    rule = _rule_or_404(pair)
    mappings = await get_services(request).matcher.list_mappings(rule)
    return {"pair": pair, "mappings": [_mapping_response(m) for m in mappings]}


@router.get("/unmatched", response_model=UnmatchedResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_unmatched(request: Request, pair: str = Query("procore_hubspot")):
    """Entities on each side still waiting for a link."""
    rule = _rule_or_404(pair)
    unmatched_a, unmatched_b = await get_services(request).matcher.unmatched(rule)
    return {
        "pair": pair,
        "unmatchedA": [_unmatched_entity(e, rule.name_a) for e in unmatched_a],
        "unmatchedB": [_unmatched_entity(e, rule.name_b) for e in unmatched_b],
    }


@router.post("/manual-link", response_model=MappingResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def manual_link(request: Request, body: ManualLinkRequest):
    rule = _rule_or_404(body.pair)
    mapping = await get_services(request).matcher.manual_link(rule, body.idA, body.idB)
    return _mapping_response(mapping)



@router.post("/reconcile")
@limiter.limit(ADMIN_RATE_LIMIT)
async def reconcile(
    request: Request,
    pair: str = Query("procore_hubspot"),
    dryRun: bool = Query(False),
    skipWrites: bool = Query(False),
):
    """Match and reconcile one pair now; dryRun reports without writing anything."""
    rule = _rule_or_404(pair)
    services = get_services(request)
    result = await run_reconcile(
        services.matcher, services.resolver, rule, POLICIES[pair],
        dry_run=dryRun, skip_writes=skipWrites,
    )
    return {"pair": pair, **result}

@router.delete("/{mapping_id}")
@limiter.limit(ADMIN_RATE_LIMIT)
async def unlink(request: Request, mapping_id: int):
    try:
        await get_services(request).matcher.unlink(mapping_id)
    except MappingNotFoundError:
        raise HTTPException(status_code=404, detail=f"Mapping {mapping_id} not found")
    return {"status": "deleted", "id": mapping_id}
