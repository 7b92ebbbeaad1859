"""
Conflict resolution and propagation between mapped entities.

For every mapping of a pair, master fields are compared against the
secondary platform's mirrored values. Divergent master fields are written
back to the secondary platform (master wins). A bidirectional field is
filled from the master when the secondary has no value, and recorded and
left alone when both sides hold different values (both kept). A blank
master value is never propagated. Write failures are recorded per field and
never abort the remaining fields.

``skip_writes`` records what would be written without calling the
secondary platform; ``dry_run`` additionally leaves stored mappings alone.

Usage:
    resolver = ConflictResolver(store, registry, sink)
    mapping = await resolver.reconcile(mapping, POLICIES["procore_hubspot"])
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from synchub.audit import AuditLogSink
from synchub.change_detector import stringify
from synchub.config import config
from synchub.events import EventBus, SyncEvent, events as default_events
from synchub.exceptions import PlatformAuthError, SyncHubError
from synchub.models import (
    AuditStatus, ConflictRecord, EntityMapping, Platform, Resolution, SyncStatus, utcnow,
)
from synchub.observability import get_logger, Timer
from synchub.platforms import PlatformRegistry

logger = get_logger(__name__)

Transform = Callable[[Optional[str]], Optional[str]]


@dataclass(frozen=True)
class ReconcilePolicy:
    """Field ownership between a master and a secondary resource."""
    name: str
    master: Tuple[Platform, str]
    secondary: Tuple[Platform, str]
    master_fields: Dict[str, str]
    both_kept_fields: Dict[str, str] = field(default_factory=dict)
    transforms: Dict[str, Transform] = field(default_factory=dict)

    def translate(self, master_field: str, value: Optional[str]) -> Optional[str]:
        transform = self.transforms.get(master_field)
        return transform(value) if transform else value


# Procore project stage -> HubSpot deal stage label
PROCORE_TO_HUBSPOT_STAGE = {
    "Estimate in Progress": "Estimating",
    "Service – Estimating": "Service – Estimating",
    "Service - Estimating": "Service – Estimating",
    "Estimate under review": "Internal Review",
    "Estimate sent to Client": "Proposal Sent",
    "Service – sent to production": "Service – Won",
    "Service - sent to production": "Service – Won",
    "Sent to production": "Closed Won",
    "Service – lost": "Service – Lost",
    "Service - lost": "Service – Lost",
    "Production – lost": "Closed Lost",
    "Production - lost": "Closed Lost",
}

DEFAULT_STAGE = "Estimating"


def map_stage(value: Optional[str]) -> str:
    """A project without a stage is Estimating; unknown stages pass through."""
    if not value:
        return DEFAULT_STAGE
    return PROCORE_TO_HUBSPOT_STAGE.get(value, value)


PROCORE_HUBSPOT = ReconcilePolicy(
    name="procore_hubspot",
    master=(Platform.PROCORE, "projects"),
    secondary=(Platform.HUBSPOT, "deals"),
    master_fields={
        "project_number": "project_number",
        "name": "dealname",
        "stage": "dealstage_name",
    },
    both_kept_fields={
        "address": "address",
        "estimated_value": "amount",
    },
    transforms={"stage": map_stage},
)

PROCORE_COMPANYCAM = ReconcilePolicy(
    name="procore_companycam",
    master=(Platform.PROCORE, "projects"),
    secondary=(Platform.COMPANYCAM, "projects"),
    master_fields={"name": "name"},
    both_kept_fields={"address": "address"},
)

POLICIES: Dict[str, ReconcilePolicy] = {
    policy.name: policy for policy in (PROCORE_HUBSPOT, PROCORE_COMPANYCAM)
}


def policies_for_master(
    platform: str, resource: str, policies: Optional[Dict[str, ReconcilePolicy]] = None
) -> List[ReconcilePolicy]:
    """Policies in which ``(platform, resource)`` is the master side."""
    policies = POLICIES if policies is None else policies
    key = (Platform(platform), resource)
    return [p for p in policies.values() if p.master == key]


class ConflictResolver:
    """Propagates master values to the secondary platform of each mapping."""

    def __init__(
        self,
        store,
        platforms: PlatformRegistry,
        sink: AuditLogSink,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.platforms = platforms
        self.sink = sink
        self.bus = bus or default_events

    async def reconcile(
        self,
        mapping: EntityMapping,
        policy: ReconcilePolicy,
        dry_run: bool = False,
        skip_writes: bool = False,
    ) -> EntityMapping:
        """
        Reconcile one mapping under ``policy`` and persist the outcome.

        The conflicts found against this policy's secondary platform replace
        any previous ones, so a clean run clears earlier conflicts. The
        outcome is saved even when a write is rejected for credentials.

        Args:
            dry_run: Compute conflicts only; nothing is written or saved
            skip_writes: Save conflicts but leave the secondary untouched

        Raises:
            PlatformAuthError: Write-back credentials rejected (job self-disables)
        """
        m_platform, m_resource = policy.master
        s_platform, s_resource = policy.secondary
        m_id = mapping.id_for(m_platform.value)
        s_id = mapping.id_for(s_platform.value)

        if not (m_id and s_id):
            mapping.last_sync_status = SyncStatus.PENDING
            return mapping

        master = await self.store.get_entity(m_platform.value, m_resource, m_id)
        secondary = await self.store.get_entity(s_platform.value, s_resource, s_id)
        if master is None or secondary is None:
            logger.debug(f"Mapping {mapping.id} not fully mirrored yet, skipping")
            mapping.last_sync_status = SyncStatus.PENDING
            if not dry_run:
                await self.store.update_mapping(mapping)
            return mapping

        writes = not (dry_run or skip_writes)
        prefix = f"{s_platform.value}."
        conflicts = [c for c in mapping.conflicts if c.platform != s_platform.value]
        updated = [f for f in mapping.updated_fields if not f.startswith(prefix)]
        counts = {"written": 0, "failed": 0, "skipped": 0}

        async def propagate(
            m_field: str, s_field: str, value: Optional[str], record: ConflictRecord
        ) -> None:
            if not writes:
                record.resolved = False
                counts["skipped"] += 1
                return
            try:
                error = await self._write(mapping, policy, s_id, m_field, s_field, value)
            except PlatformAuthError as e:
                record.resolved = False
                record.error = str(e)
                counts["failed"] += 1
                raise
            if error is None:
                updated.append(f"{prefix}{s_field}")
                counts["written"] += 1
            else:
                record.resolved = False
                record.error = error
                counts["failed"] += 1

        try:
            for m_field, s_field in policy.master_fields.items():
                raw = master.get(m_field)
                if stringify(raw) == "":
                    continue
                value = policy.translate(m_field, raw)
                current = secondary.get(s_field)
                if stringify(value) == stringify(current):
                    continue

                conflict = ConflictRecord(
                    field=s_field,
                    master_value=value,
                    secondary_value=current,
                    resolution=Resolution.MASTER_WINS,
                    platform=s_platform.value,
                )
                conflicts.append(conflict)
                await propagate(m_field, s_field, value, conflict)

            for m_field, s_field in policy.both_kept_fields.items():
                value = master.get(m_field)
                current = secondary.get(s_field)
                if stringify(value) == "" or stringify(value) == stringify(current):
                    continue

                if stringify(current) != "":
                    conflicts.append(ConflictRecord(
                        field=s_field,
                        master_value=value,
                        secondary_value=current,
                        resolution=Resolution.BOTH_KEPT,
                        platform=s_platform.value,
                    ))
                    continue

                # Empty on the secondary: fill from the master
                fill = ConflictRecord(
                    field=s_field,
                    master_value=value,
                    secondary_value=current,
                    resolution=Resolution.MASTER_WINS,
                    platform=s_platform.value,
                )
                try:
                    await propagate(m_field, s_field, value, fill)
                finally:
                    if not fill.resolved:
                        conflicts.append(fill)
        finally:
            mapping.conflicts = conflicts
            mapping.updated_fields = updated
            mapping.names_by_platform[m_platform.value] = master.get("name")
            mapping.last_sync_at = utcnow()
            mapping.last_sync_status = _status(counts)
            if not dry_run:
                await self.store.update_mapping(mapping)

        await self.bus.emit(
            SyncEvent.MAPPING_RECONCILED,
            {
                "mapping_id": mapping.id,
                "policy": policy.name,
                "status": mapping.last_sync_status.value,
                "written": counts["written"],
                "failed": counts["failed"],
                "skipped": counts["skipped"],
                "dry_run": dry_run,
            },
            source="reconciler",
        )
        return mapping

    async def _write(
        self,
        mapping: EntityMapping,
        policy: ReconcilePolicy,
        s_id: str,
        m_field: str,
        s_field: str,
        value: Optional[str],
    ) -> Optional[str]:
        """
        Write one master value to the secondary platform and its mirror.

        Returns:
            None on success, otherwise the error message
        """
        m_platform, _ = policy.master
        s_platform, s_resource = policy.secondary
        entity_type = f"{s_platform.value}.{s_resource}"
        details = {"mapping_id": mapping.id, "field": s_field, "master_field": m_field, "value": value}

        with Timer(f"write {entity_type}.{s_field}") as timer:
            try:
                await self.platforms.write_field(s_platform, s_resource, s_id, s_field, value)
            except PlatformAuthError:
                raise
            except SyncHubError as e:
                logger.warning(
                    f"Write-back of {entity_type}.{s_field} failed for {s_id}: {e}",
                    extra={"mapping_id": mapping.id},
                )
                await self.sink.record(
                    action="field_write",
                    entity_type=entity_type,
                    entity_id=s_id,
                    status=AuditStatus.ERROR,
                    details=details,
                    source=m_platform.value,
                    destination=s_platform.value,
                    error_message=str(e),
                )
                return str(e)

        await self.store.set_entity_field(s_platform.value, s_resource, s_id, s_field, value)
        await self.sink.record(
            action="field_write",
            entity_type=entity_type,
            entity_id=s_id,
            status=AuditStatus.SUCCESS,
            details=details,
            source=m_platform.value,
            destination=s_platform.value,
            duration_ms=timer.elapsed_ms,
        )
        return None

    async def reconcile_all(
        self,
        policy: ReconcilePolicy,
        dry_run: Optional[bool] = None,
        skip_writes: Optional[bool] = None,
        candidates: Optional[List[EntityMapping]] = None,
    ) -> Dict[str, Any]:
        """
        Reconcile every mapping that links both sides of ``policy``.

        ``dry_run`` and ``skip_writes`` default to the RECONCILE_* settings.
        ``candidates`` are unsaved mappings (from a dry matching run) to
        reconcile alongside the stored ones.
        """
        if dry_run is None:
            dry_run = config.reconcile.dry_run
        if skip_writes is None:
            skip_writes = config.reconcile.skip_writes
        m_platform, _ = policy.master
        s_platform, _ = policy.secondary
        mappings = await self.store.list_mappings(m_platform.value, s_platform.value)
        mappings += candidates or []

        counts: Dict[str, Any] = {status.value: 0 for status in SyncStatus}
        counts.update({
            "mappings": len(mappings),
            "written": 0,
            "write_failures": 0,
            "pending_writes": 0,
            "errors": 0,
            "dry_run": dry_run,
            "skip_writes": skip_writes,
        })

        for mapping in mappings:
            try:
                result = await self.reconcile(mapping, policy, dry_run=dry_run, skip_writes=skip_writes)
            except PlatformAuthError:
                raise
            except Exception as e:
                counts["errors"] += 1
                logger.error(f"Reconcile of mapping {mapping.id} failed: {e}", exc_info=True)
                continue
            unresolved = [c for c in result.unresolved_conflicts if c.platform == s_platform.value]
            counts[result.last_sync_status.value] += 1
            counts["write_failures"] += sum(1 for c in unresolved if c.error)
            counts["pending_writes"] += sum(1 for c in unresolved if not c.error)
            counts["written"] += len([
                f for f in result.updated_fields if f.startswith(f"{s_platform.value}.")
            ])

        logger.info(f"Reconciled {policy.name}", extra=counts)
        return counts


def _status(counts: Dict[str, int]) -> SyncStatus:
    attempted = counts["written"] + counts["failed"]
    if attempted and counts["failed"] == attempted:
        return SyncStatus.ERROR
    if counts["failed"]:
        return SyncStatus.PARTIAL
    if counts["skipped"]:
        return SyncStatus.PENDING
    return SyncStatus.SYNCED
