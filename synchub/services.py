"""
Service wiring.

Builds the engine's collaborators around one store and one platform
registry. The web app owns a single ``Services`` instance; tests build
their own with an in-memory store and fake platform clients.

Usage:
    services = build_services()
    await services.start()
    ...
    await services.stop()
"""
from dataclasses import dataclass
from typing import Optional

from synchub.audit import AuditLogSink, AuditTrail
from synchub.events import EventBus, events as default_events
from synchub.idempotency import IdempotencyGuard
from synchub.jobs import register_default_jobs
from synchub.matcher import Matcher
from synchub.observability import get_logger
from synchub.platforms import PlatformRegistry, build_registry
from synchub.poller import PlatformPoller
from synchub.reconciler import ConflictResolver
from synchub.scheduler import Scheduler
from synchub.store import DuckDBStore
from synchub.webhooks import ReactionQueue, WebhookDispatcher, WebhookReactor

logger = get_logger(__name__)


@dataclass
class Services:
    store: DuckDBStore
    platforms: PlatformRegistry
    bus: EventBus
    audit: AuditTrail
    sink: AuditLogSink
    guard: IdempotencyGuard
    poller: PlatformPoller
    matcher: Matcher
    resolver: ConflictResolver
    reactor: WebhookReactor
    queue: ReactionQueue
    dispatcher: WebhookDispatcher
    scheduler: Scheduler

    async def start(self, run_scheduler: bool = True) -> None:
        """Connect the store, start reaction workers and (optionally) timers."""
        await self.store.connect()
        await self.queue.start()
        if run_scheduler:
            await self.scheduler.start()
        else:
            await self.scheduler.load()
        logger.info("Sync services started")

    async def stop(self) -> None:
        await self.scheduler.shutdown()
        await self.queue.stop()
        await self.platforms.close()
        await self.store.close()
        logger.info("Sync services stopped")


def build_services(
    store: Optional[DuckDBStore] = None,
    platforms: Optional[PlatformRegistry] = None,
    bus: Optional[EventBus] = None,
    queue_size: Optional[int] = None,
    workers: Optional[int] = None,
) -> Services:
    """Wire every collaborator; nothing is connected until ``start()``."""
    store = store or DuckDBStore()
    platforms = platforms or build_registry()
    bus = bus or default_events

    audit = AuditTrail(store)
    sink = AuditLogSink(store)
    guard = IdempotencyGuard(store)
    poller = PlatformPoller(store, platforms, audit, sink, bus)
    matcher = Matcher(store, bus)
    resolver = ConflictResolver(store, platforms, sink, bus)
    reactor = WebhookReactor(store, platforms, poller, resolver, sink)
    queue = ReactionQueue(reactor.react, maxsize=queue_size, workers=workers)
    dispatcher = WebhookDispatcher(store, guard, sink, queue, bus)
    scheduler = Scheduler(store, sink, bus)

    register_default_jobs(scheduler, poller, matcher, resolver, guard)

    return Services(
        store=store,
        platforms=platforms,
        bus=bus,
        audit=audit,
        sink=sink,
        guard=guard,
        poller=poller,
        matcher=matcher,
        resolver=resolver,
        reactor=reactor,
        queue=queue,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )
