"""
Pydantic request/response models for API endpoints.

Field names follow the camelCase contract used by the operator UI.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class StoreStats(BaseModel):
    """DuckDB statistics."""
    status: str
    latency_ms: Optional[float] = None
    remote_entities: Optional[int] = None
    change_records: Optional[int] = None
    idempotency_keys: Optional[int] = None
    webhook_events: Optional[int] = None
    audit_logs: Optional[int] = None
    entity_mappings: Optional[int] = None
    poll_jobs: Optional[int] = None
    total_queries: Optional[int] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    duckdb: StoreStats
    scheduler_running: bool = Field(False, description="Whether job timers are active")
    reaction_queue_size: int = Field(0, description="Webhook reactions waiting for a worker")


# ═══════════════════════════════════════════════════════════════════════════════
# WEBHOOKS
# ═══════════════════════════════════════════════════════════════════════════════

class AckResponse(BaseModel):
    """Webhook acknowledgement."""
    status: str = Field(description="accepted, already_handled or ignored")
    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    event_ids: List[int] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# AUTOMATION
# ═══════════════════════════════════════════════════════════════════════════════

class JobConfigRequest(BaseModel):
    """Operator change to a poll job."""
    enabled: bool
    intervalMinutes: int = Field(ge=1, description="Minutes between runs")


class JobConfigResponse(BaseModel):
    """Persisted poll job configuration and last outcome."""
    jobName: str
    enabled: bool
    intervalMinutes: int
    isRunning: bool
    lastPollAt: Optional[str] = None
    lastPollResult: Optional[Dict[str, Any]] = None
    disabledReason: Optional[str] = None
    errorCount: int = 0
    description: Optional[str] = None
    nextRun: Optional[str] = None


class JobsResponse(BaseModel):
    jobs: List[JobConfigResponse]


class TriggerResponse(BaseModel):
    started: bool
    status: str = Field(description="started or already_running")


# ═══════════════════════════════════════════════════════════════════════════════
# MAPPINGS
# ═══════════════════════════════════════════════════════════════════════════════

class ConflictResponse(BaseModel):
    field: str
    master_value: Optional[str] = None
    secondary_value: Optional[str] = None
    resolution: str
    resolved: bool = True
    error: Optional[str] = None
    platform: Optional[str] = None


class MappingResponse(BaseModel):
    """Cross-platform entity link."""
    id: int
    idsByPlatform: Dict[str, Optional[str]]
    namesByPlatform: Dict[str, Optional[str]] = Field(default_factory=dict)
    matchType: str
    conflicts: List[ConflictResponse] = Field(default_factory=list)
    updatedFields: List[str] = Field(default_factory=list)
    lastSyncAt: Optional[str] = None
    lastSyncStatus: str


class MappingsResponse(BaseModel):
    pair: str
    mappings: List[MappingResponse]


class ManualLinkRequest(BaseModel):
    idA: str = Field(min_length=1)
    idB: str = Field(min_length=1)
    pair: str = "procore_hubspot"


class UnmatchedEntity(BaseModel):
    nativeId: str
    name: Optional[str] = None
    fields: Dict[str, Optional[str]] = Field(default_factory=dict)


class UnmatchedResponse(BaseModel):
    pair: str
    unmatchedA: List[UnmatchedEntity]
    unmatchedB: List[UnmatchedEntity]


# ═══════════════════════════════════════════════════════════════════════════════
# CHANGES
# ═══════════════════════════════════════════════════════════════════════════════

class ChangeRecordResponse(BaseModel):
    id: Optional[int] = None
    entityType: str
    nativeId: str
    changeType: str
    fieldName: Optional[str] = None
    oldValue: Optional[str] = None
    newValue: Optional[str] = None
    fullSnapshot: Optional[Dict[str, Optional[str]]] = None
    createdAt: Optional[str] = None


class ChangesResponse(BaseModel):
    changes: List[ChangeRecordResponse]
