"""
Poll job bodies: fetch remote entities, detect changes, refresh mirrors.

A platform sync walks every page of every resource in fetch order. Each
entity is diffed against its mirror, the mirror is overwritten and any
change records are appended to the audit trail. A failure on one entity is
logged and counted; a fetch failure aborts the whole cycle so the scheduler
can classify it (auth vs transient).
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from synchub.audit import AuditLogSink, AuditTrail
from synchub.change_detector import detect
from synchub.events import EventBus, SyncEvent, events as default_events
from synchub.models import AuditStatus, ChangeType, Platform, RemoteEntity
from synchub.observability import get_logger, Timer
from synchub.platforms import PlatformRegistry

logger = get_logger(__name__)

JobBody = Callable[[], Awaitable[Dict[str, Any]]]


class PlatformPoller:
    """
    Mirrors remote entities into the store.

    Usage:
        poller = PlatformPoller(store, registry, audit, sink)
        stats = await poller.sync_platform(Platform.PROCORE, purge=True)
    """

    def __init__(
        self,
        store,
        platforms: PlatformRegistry,
        audit: AuditTrail,
        sink: AuditLogSink,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.platforms = platforms
        self.audit = audit
        self.sink = sink
        self.bus = bus or default_events

    async def apply(
        self, entity: RemoteEntity, tracked_fields: Optional[List[str]] = None
    ) -> str:
        """
        Diff one fetched entity against its mirror, then persist both
        in one store transaction.

        Returns:
            'created', 'updated' or 'unchanged'
        """
        if tracked_fields is None:
            tracked_fields = self.platforms.tracked_fields(entity.platform, entity.entity_type)

        existing = await self.store.get_entity(entity.platform, entity.entity_type, entity.native_id)
        changes = detect(existing, entity, tracked_fields)
        await self.store.mirror_entity(entity, changes)

        if not changes:
            return "unchanged"
        if changes[0].change_type == ChangeType.CREATED:
            return "created"
        return "updated"

    async def sync_resource(self, platform: Platform, resource: str) -> Dict[str, int]:
        """
        Mirror every entity of one resource.

        Raises:
            PlatformError: If fetching a page fails (aborts this resource)
        """
        platform = Platform(platform)
        tracked = self.platforms.tracked_fields(platform, resource)
        stats = {"fetched": 0, "created": 0, "updated": 0, "unchanged": 0, "failed": 0}

        with Timer(f"{platform.value}.{resource} sync") as timer:
            async for page in self.platforms.iter_pages(platform, resource):
                for entity in page.entities:
                    stats["fetched"] += 1
                    try:
                        outcome = await self.apply(entity, tracked)
                    except Exception as e:
                        stats["failed"] += 1
                        logger.error(
                            f"Failed to mirror {entity.qualified_type} {entity.native_id}: {e}",
                            exc_info=True,
                        )
                        continue
                    stats[outcome] += 1

        logger.info(
            f"Synced {platform.value}.{resource}",
            extra={"stats": stats, "duration_ms": round(timer.elapsed_ms, 2)},
        )

        if stats["created"] or stats["updated"]:
            await self.sink.record(
                action=f"{platform.value}_sync",
                entity_type=f"{platform.value}.{resource}",
                entity_id=None,
                status=AuditStatus.SUCCESS,
                details=stats,
                source=platform.value,
                duration_ms=timer.elapsed_ms,
            )

        await self.bus.emit(
            SyncEvent.RESOURCE_SYNCED,
            {"platform": platform.value, "resource": resource, **stats},
            source="poller",
        )
        return stats

    async def sync_platform(
        self,
        platform: Platform,
        resources: Optional[Iterable[str]] = None,
        purge: bool = False,
    ) -> Dict[str, Any]:
        """
        Full sync cycle for one platform.

        Args:
            platform: Platform to poll
            resources: Subset of resources (defaults to all the client supports)
            purge: Run change-record retention purge at the end of the cycle
        """
        platform = Platform(platform)
        resources = list(resources or self.platforms.client(platform).resources)
        result: Dict[str, Any] = {"platform": platform.value, "resources": {}}
        totals = {"created": 0, "updated": 0, "failed": 0}

        for resource in resources:
            stats = await self.sync_resource(platform, resource)
            result["resources"][resource] = stats
            for key in totals:
                totals[key] += stats[key]

        result.update(totals)

        if purge:
            result["purged"] = await self.audit.purge()
            await self.bus.emit(
                SyncEvent.CHANGES_PURGED, {"removed": result["purged"]}, source="poller"
            )

        return result

    def job(
        self,
        platform: Platform,
        resources: Optional[Iterable[str]] = None,
        purge: bool = False,
    ) -> JobBody:
        """Scheduler job body for a platform sync."""
        async def _body() -> Dict[str, Any]:
            return await self.sync_platform(platform, resources, purge=purge)

        _body.__name__ = f"sync_{Platform(platform).value}"
        return _body
