"""
Domain models for mirrored platform data.

Provides type-safe dataclasses for mirrored entities, change records,
cross-platform mappings and job state. Platform payloads are decoded into
these at the integration boundary; the raw JSON is kept alongside the
typed view for debugging only.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Platform(str, Enum):
    """External platforms the hub mirrors."""
    PROCORE = "procore"
    HUBSPOT = "hubspot"
    COMPANYCAM = "companycam"

    @property
    def key_prefix(self) -> str:
        """Prefix used for idempotency keys."""
        prefixes = {
            Platform.PROCORE: "pc",
            Platform.HUBSPOT: "hs",
            Platform.COMPANYCAM: "cc",
        }
        return prefixes[self]

    @property
    def display_name(self) -> str:
        names = {
            Platform.PROCORE: "Procore",
            Platform.HUBSPOT: "HubSpot",
            Platform.COMPANYCAM: "CompanyCam",
        }
        return names[self]


class ChangeType(str, Enum):
    CREATED = "created"
    FIELD_CHANGED = "field_changed"


class MatchType(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    MANUAL = "manual"


class Resolution(str, Enum):
    MASTER_WINS = "master_wins"
    BOTH_KEPT = "both_kept"


class SyncStatus(str, Enum):
    """Outcome of the last reconcile for a mapping."""
    PENDING = "pending"
    SYNCED = "synced"
    PARTIAL = "partial"
    ERROR = "error"


class WebhookStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DuckDB TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_field_value(value: Any) -> Optional[str]:
    """Project a raw JSON value onto the string-or-null field map."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return None
    return str(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a platform timestamp into naive UTC.

    Accepts ISO-8601 strings (with 'Z' or offset) and epoch milliseconds,
    which HubSpot uses for ``occurredAt``. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        parsed = datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ═══════════════════════════════════════════════════════════════════════════════
# DATACLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class RemoteEntity:
    """Local mirror of one remote entity, keyed by platform-native id."""
    platform: str
    entity_type: str
    native_id: str
    fields: Dict[str, Optional[str]] = field(default_factory=dict)
    raw_payload: Dict[str, Any] = field(default_factory=dict)
    last_synced_at: Optional[datetime] = None

    @property
    def qualified_type(self) -> str:
        """Entity type qualified with its platform, e.g. 'procore.projects'."""
        return f"{self.platform}.{self.entity_type}"

    def get(self, field_name: str) -> Optional[str]:
        return self.fields.get(field_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "entity_type": self.entity_type,
            "native_id": self.native_id,
            "fields": dict(self.fields),
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


@dataclass
class ChangeRecord:
    """
    One audit-trail entry.

    ``created`` records carry a full snapshot and no field diff;
    ``field_changed`` records carry exactly one field's before/after values.
    """
    entity_type: str
    native_id: str
    change_type: ChangeType
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    full_snapshot: Optional[Dict[str, Optional[str]]] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def created(cls, entity: RemoteEntity) -> "ChangeRecord":
        return cls(
            entity_type=entity.qualified_type,
            native_id=entity.native_id,
            change_type=ChangeType.CREATED,
            full_snapshot=dict(entity.fields),
        )

    @classmethod
    def field_changed(
        cls, entity: RemoteEntity, field_name: str, old_value: str, new_value: str
    ) -> "ChangeRecord":
        return cls(
            entity_type=entity.qualified_type,
            native_id=entity.native_id,
            change_type=ChangeType.FIELD_CHANGED,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "native_id": self.native_id,
            "change_type": self.change_type.value,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "full_snapshot": self.full_snapshot,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ConflictRecord:
    """
    A divergence found while reconciling a mapping.

    ``platform`` is the secondary platform the conflict was found against,
    so reconciles of different pairs on one mapping keep separate lists.
    """
    field: str
    master_value: Optional[str]
    secondary_value: Optional[str]
    resolution: Resolution
    resolved: bool = True
    error: Optional[str] = None
    platform: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "master_value": self.master_value,
            "secondary_value": self.secondary_value,
            "resolution": self.resolution.value,
            "resolved": self.resolved,
            "error": self.error,
            "platform": self.platform,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConflictRecord":
        return cls(
            field=data["field"],
            master_value=data.get("master_value"),
            secondary_value=data.get("secondary_value"),
            resolution=Resolution(data.get("resolution", Resolution.MASTER_WINS.value)),
            resolved=data.get("resolved", True),
            error=data.get("error"),
            platform=data.get("platform"),
        )


@dataclass
class EntityMapping:
    """Cross-platform link between entities believed to be the same object."""
    ids_by_platform: Dict[str, Optional[str]]
    match_type: MatchType
    names_by_platform: Dict[str, Optional[str]] = field(default_factory=dict)
    conflicts: List[ConflictRecord] = field(default_factory=list)
    updated_fields: List[str] = field(default_factory=list)
    last_sync_at: Optional[datetime] = None
    last_sync_status: SyncStatus = SyncStatus.PENDING
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def id_for(self, platform: str) -> Optional[str]:
        return self.ids_by_platform.get(platform)

    def links(self, platform_a: str, platform_b: str) -> bool:
        """True when both platforms are populated on this mapping."""
        return bool(self.id_for(platform_a)) and bool(self.id_for(platform_b))

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "conflicts": [c.to_dict() for c in self.conflicts],
            "updated_fields": list(self.updated_fields),
        }

    @property
    def unresolved_conflicts(self) -> List[ConflictRecord]:
        return [c for c in self.conflicts if not c.resolved]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ids_by_platform": dict(self.ids_by_platform),
            "names_by_platform": dict(self.names_by_platform),
            "match_type": self.match_type.value,
            "metadata": self.metadata,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "last_sync_status": self.last_sync_status.value,
        }


@dataclass
class PollJobState:
    """Persisted configuration plus process-local run flag for a poll job."""
    job_name: str
    enabled: bool = False
    interval_minutes: int = 60
    is_running: bool = False
    last_run_at: Optional[datetime] = None
    last_result: Optional[Dict[str, Any]] = None
    disabled_reason: Optional[str] = None
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "enabled": self.enabled,
            "interval_minutes": self.interval_minutes,
            "is_running": self.is_running,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_result": self.last_result,
            "disabled_reason": self.disabled_reason,
            "error_count": self.error_count,
        }


@dataclass
class InboundEvent:
    """A single webhook event decoded from a platform envelope."""
    source: Platform
    event_type: str
    resource_type: str
    resource_id: str
    event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_deletion(self) -> bool:
        lowered = self.event_type.lower()
        return any(word in lowered for word in ("delete", "deletion", "destroy"))


@dataclass
class AckResult:
    """What a webhook delivery was acknowledged with."""
    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    event_ids: List[int] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.accepted:
            return "accepted"
        if self.duplicates:
            return "already_handled"
        return "ignored"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "event_ids": list(self.event_ids),
        }


@dataclass
class Page:
    """One page of decoded entities plus the cursor for the next page."""
    entities: List[RemoteEntity]
    next_cursor: Optional[str] = None
