"""
Inbound webhook pipeline.

Flow for every delivery:
    parse envelope -> per event: derive key -> claim and log -> enqueue

The HTTP layer acknowledges immediately; reactions (refetch, diff, mirror,
reconcile) run on a bounded ReactionQueue served by worker tasks. Malformed
deliveries, store failures and full-queue drops are acknowledged and
recorded, never raised back to the platform.

Usage:
    queue = ReactionQueue(reactor.react)
    dispatcher = WebhookDispatcher(store, guard, sink, queue)
    await queue.start()
    ack = await dispatcher.receive(body, Platform.HUBSPOT)
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import orjson

from synchub.audit import AuditLogSink
from synchub.config import config
from synchub.events import EventBus, SyncEvent, events as default_events
from synchub.exceptions import MalformedEventError, PlatformAuthError
from synchub.idempotency import IdempotencyGuard
from synchub.models import (
    AckResult, AuditStatus, InboundEvent, Platform, WebhookStatus, parse_timestamp,
)
from synchub.observability import get_logger, Timer, correlation_context, generate_correlation_id
from synchub.platforms import PlatformRegistry
from synchub.reconciler import policies_for_master

logger = get_logger(__name__)

Reaction = Callable[[int, InboundEvent], Awaitable[None]]

# Object type in a webhook -> mirrored resource
HUBSPOT_OBJECTS = {"deal": "deals", "company": "companies", "contact": "contacts"}
PROCORE_RESOURCES = {"projects": "projects", "vendors": "vendors", "users": "users"}
COMPANYCAM_OBJECTS = {"project": "projects", "photo": "photos", "user": "users"}


# ═══════════════════════════════════════════════════════════════════════════════
# ENVELOPE PARSERS
# ═══════════════════════════════════════════════════════════════════════════════

def _decode_body(raw: Union[bytes, str, Dict, List], source: Platform) -> Any:
    if isinstance(raw, (dict, list)):
        return raw
    if not raw:
        raise MalformedEventError("Empty webhook body", source=source.value)
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MalformedEventError("Webhook body is not JSON", str(e), source=source.value) from e


def _parse_hubspot(body: Any) -> Tuple[List[InboundEvent], int]:
    items = body if isinstance(body, list) else [body]
    parsed, rejected = [], 0
    for item in items:
        if not isinstance(item, dict):
            rejected += 1
            continue
        subscription = str(item.get("subscriptionType") or "")
        object_type = subscription.split(".", 1)[0]
        resource = HUBSPOT_OBJECTS.get(object_type)
        object_id = item.get("objectId")
        if not resource or object_id is None:
            rejected += 1
            continue
        parsed.append(InboundEvent(
            source=Platform.HUBSPOT,
            event_type=subscription,
            resource_type=resource,
            resource_id=str(object_id),
            event_id=str(item["eventId"]) if item.get("eventId") is not None else None,
            occurred_at=parse_timestamp(item.get("occurredAt")),
            payload=item,
        ))
    return parsed, rejected


def _parse_procore(body: Any) -> Tuple[List[InboundEvent], int]:
    if not isinstance(body, dict):
        raise MalformedEventError("Procore webhook must be an object", source="procore")
    name = str(body.get("resource_name") or "").strip().lower().replace(" ", "_")
    resource = PROCORE_RESOURCES.get(name)
    resource_id = body.get("resource_id")
    event_type = body.get("event_type")
    if resource_id is None or not event_type:
        raise MalformedEventError("Procore webhook missing resource_id or event_type", source="procore")
    if resource is None:
        logger.info(f"Ignoring Procore webhook for resource {name or '?'}")
        return [], 1
    return [InboundEvent(
        source=Platform.PROCORE,
        event_type=str(event_type),
        resource_type=resource,
        resource_id=str(resource_id),
        event_id=str(body["id"]) if body.get("id") is not None else None,
        occurred_at=parse_timestamp(body.get("timestamp")),
        payload=body,
    )], 0


def _parse_companycam(body: Any) -> Tuple[List[InboundEvent], int]:
    if not isinstance(body, dict):
        raise MalformedEventError("CompanyCam webhook must be an object", source="companycam")
    event_type = body.get("event_type") or body.get("type")
    if not event_type:
        raise MalformedEventError("CompanyCam webhook missing event_type", source="companycam")

    object_type = str(event_type).split(".", 1)[0]
    payload = body.get("payload") or body.get("data") or {}
    if not isinstance(payload, dict):
        payload = {}
    target = payload.get(object_type)
    if not isinstance(target, dict):
        target = payload
    resource_id = target.get("id")
    if resource_id is None:
        raise MalformedEventError("CompanyCam webhook missing object id", source="companycam")

    resource = COMPANYCAM_OBJECTS.get(object_type)
    if resource is None:
        logger.info(f"Ignoring CompanyCam webhook for {object_type}")
        return [], 1
    return [InboundEvent(
        source=Platform.COMPANYCAM,
        event_type=str(event_type),
        resource_type=resource,
        resource_id=str(resource_id),
        event_id=str(body["id"]) if body.get("id") is not None else None,
        occurred_at=parse_timestamp(body.get("created_at")),
        payload=body,
    )], 0


_PARSERS = {
    Platform.HUBSPOT: _parse_hubspot,
    Platform.PROCORE: _parse_procore,
    Platform.COMPANYCAM: _parse_companycam,
}


def parse_envelope(
    source: Union[Platform, str], raw: Union[bytes, str, Dict, List]
) -> Tuple[List[InboundEvent], int]:
    """
    Decode one delivery into events.

    Returns:
        (events, rejected) where rejected counts unusable items in a batch

    Raises:
        MalformedEventError: If the envelope as a whole is unusable
    """
    source = Platform(source)
    return _PARSERS[source](_decode_body(raw, source))


# ═══════════════════════════════════════════════════════════════════════════════
# REACTION QUEUE
# ═══════════════════════════════════════════════════════════════════════════════

class ReactionQueue:
    """
    Bounded asyncio.Queue served by N worker tasks.

    A reaction that raises is logged and swallowed so the worker survives;
    the reaction itself is responsible for recording its outcome.
    """

    def __init__(
        self,
        handler: Reaction,
        maxsize: Optional[int] = None,
        workers: Optional[int] = None,
    ):
        self.handler = handler
        self.maxsize = maxsize or config.webhooks.queue_size
        self.worker_count = workers or config.webhooks.workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        return self._queue

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def qsize(self) -> int:
        return self.queue.qsize()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"reaction-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Reaction queue started with {self.worker_count} workers")

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Reaction queue stopped")

    async def join(self) -> None:
        """Wait until every queued reaction has been handled."""
        await self.queue.join()

    def offer(self, event_id: int, event: InboundEvent) -> bool:
        """Enqueue without waiting. Returns False when the queue is full."""
        try:
            self.queue.put_nowait((event_id, event))
        except asyncio.QueueFull:
            return False
        return True

    async def _worker(self, index: int) -> None:
        while True:
            event_id, event = await self.queue.get()
            try:
                with correlation_context(generate_correlation_id("wh")):
                    await self.handler(event_id, event)
            except Exception as e:
                logger.error(f"Reaction worker {index} failed on event {event_id}: {e}", exc_info=True)
            finally:
                self.queue.task_done()


# ═══════════════════════════════════════════════════════════════════════════════
# DISPATCHER
# ═══════════════════════════════════════════════════════════════════════════════

class WebhookDispatcher:
    """Acknowledges deliveries and hands first-seen events to the queue."""

    def __init__(
        self,
        store,
        guard: IdempotencyGuard,
        sink: AuditLogSink,
        queue: ReactionQueue,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.guard = guard
        self.sink = sink
        self.queue = queue
        self.bus = bus or default_events

    async def receive(
        self, raw: Union[bytes, str, Dict, List], source: Union[Platform, str]
    ) -> AckResult:
        """Process one delivery. Never raises for bad payloads."""
        source = Platform(source)

        try:
            inbound, rejected = parse_envelope(source, raw)
        except MalformedEventError as e:
            logger.warning(f"Malformed {source.value} webhook: {e}", extra={"details": e.details})
            await self.sink.record(
                action="webhook_receive",
                entity_type=None,
                entity_id=None,
                status=AuditStatus.ERROR,
                details={"body": _preview(raw)},
                source=source.value,
                error_message=str(e),
            )
            await self.bus.emit(
                SyncEvent.WEBHOOK_FAILED, {"source": source.value, "error": str(e)}, source="webhooks"
            )
            return AckResult(rejected=1)

        ack = AckResult(rejected=rejected)
        for event in inbound:
            key = self.guard.derive_key(
                source, event.resource_id, event.event_type,
                event.occurred_at, event.event_id, event.payload,
            )
            try:
                await self._admit(key, event, ack)
            except Exception as e:
                ack.rejected += 1
                logger.error(f"Failed to record {source.value} event {key}: {e}", exc_info=True)
                await self._record_failure(event, key, e)

        logger.info(
            f"Received {source.value} webhook",
            extra={"source": source.value, **ack.to_dict()},
        )
        if ack.accepted:
            await self.bus.emit(
                SyncEvent.WEBHOOK_ACCEPTED,
                {"source": source.value, "accepted": ack.accepted, "event_ids": ack.event_ids},
                source="webhooks",
            )
        return ack

    async def _admit(self, key: str, event: InboundEvent, ack: AckResult) -> None:
        source = event.source.value
        event_id = await self.guard.claim_event(key, event)
        if event_id is None:
            ack.duplicates += 1
            return
        ack.event_ids.append(event_id)

        if self.queue.offer(event_id, event):
            ack.accepted += 1
            return

        await self.store.update_webhook_event(
            event_id, WebhookStatus.FAILED.value, error_message="reaction queue full"
        )
        await self.sink.record(
            action="webhook_enqueue",
            entity_type=f"{source}.{event.resource_type}",
            entity_id=event.resource_id,
            status=AuditStatus.ERROR,
            details={"webhook_event_id": event_id},
            source=source,
            error_message="reaction queue full",
        )
        ack.rejected += 1

    async def _record_failure(self, event: InboundEvent, key: str, error: Exception) -> None:
        """Best-effort audit row for an event the store could not take."""
        try:
            await self.sink.record(
                action="webhook_receive",
                entity_type=f"{event.source.value}.{event.resource_type}",
                entity_id=event.resource_id,
                status=AuditStatus.ERROR,
                details={"idempotency_key": key},
                source=event.source.value,
                error_message=str(error),
            )
        except Exception as e:
            logger.error(f"Could not audit failed event {key}: {e}")


def _preview(raw: Any, limit: int = 500) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw[:limit].decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw[:limit]
    return orjson.dumps(raw, default=str).decode()[:limit]


# ═══════════════════════════════════════════════════════════════════════════════
# REACTOR
# ═══════════════════════════════════════════════════════════════════════════════

class WebhookReactor:
    """
    Reaction to one accepted event: re-read, diff, mirror, reconcile.

    The webhook payload is only a hint; current state is always refetched
    from the platform.
    """

    def __init__(
        self,
        store,
        platforms: PlatformRegistry,
        poller,
        resolver,
        sink: AuditLogSink,
        policies: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.platforms = platforms
        self.poller = poller
        self.resolver = resolver
        self.sink = sink
        self.policies = policies

    async def react(self, event_id: int, event: InboundEvent) -> None:
        platform = event.source.value
        with Timer(f"react {platform}.{event.resource_type}") as timer:
            try:
                if event.is_deletion:
                    status, detail = WebhookStatus.SKIPPED, "deletion events are not mirrored"
                else:
                    status, detail = await self._refresh(event, policies_for_master(
                        platform, event.resource_type, self.policies
                    ))
            except PlatformAuthError as e:
                logger.warning(f"Reaction to event {event_id} rejected by {platform}: {e}")
                status, detail = WebhookStatus.FAILED, str(e)
            except Exception as e:
                logger.error(f"Reaction to event {event_id} failed: {e}", exc_info=True)
                status, detail = WebhookStatus.FAILED, str(e)

        await self.store.update_webhook_event(
            event_id,
            status.value,
            error_message=detail if status == WebhookStatus.FAILED else None,
            processing_time_ms=round(timer.elapsed_ms, 2),
        )

        if status == WebhookStatus.FAILED:
            await self.sink.record(
                action="webhook_react",
                entity_type=f"{platform}.{event.resource_type}",
                entity_id=event.resource_id,
                status=AuditStatus.ERROR,
                details={"webhook_event_id": event_id, "event_type": event.event_type},
                source=platform,
                error_message=detail,
            )

    async def _refresh(self, event: InboundEvent, policies) -> Tuple[WebhookStatus, Optional[str]]:
        entity = await self.platforms.fetch_one(event.source, event.resource_type, event.resource_id)
        if entity is None:
            return WebhookStatus.SKIPPED, "resource no longer exists"

        outcome = await self.poller.apply(entity)
        logger.info(
            f"Refreshed {entity.qualified_type} {entity.native_id} from webhook: {outcome}"
        )

        if policies:
            mapping = await self.store.find_mapping(event.source.value, entity.native_id)
            if mapping is not None:
                for policy in policies:
                    mapping = await self.resolver.reconcile(
                        mapping,
                        policy,
                        dry_run=config.reconcile.dry_run,
                        skip_writes=config.reconcile.skip_writes,
                    )

        return WebhookStatus.PROCESSED, None
