"""
Event-driven hooks for sync operations.

Provides a simple publish/subscribe pattern for decoupling the engine
(scheduler, pollers, webhook dispatcher, reconciler) from its observers
(metrics, alerting, logging).

Usage:
    from synchub.events import events, SyncEvent

    @events.on(SyncEvent.JOB_DISABLED)
    async def alert_disabled(data: dict):
        print(f"{data['job_name']} disabled: {data['reason']}")

    await events.emit(SyncEvent.JOB_DISABLED, {"job_name": "procore_sync", "reason": "auth_expired"})
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Union

from synchub.observability import get_logger, get_correlation_id

logger = get_logger(__name__)

# Type for event handlers
EventHandler = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class SyncEvent(Enum):
    """Events emitted by the sync engine."""

    # Scheduler lifecycle
    JOB_STARTED = "scheduler.job_started"
    JOB_COMPLETED = "scheduler.job_completed"
    JOB_FAILED = "scheduler.job_failed"
    JOB_SKIPPED = "scheduler.job_skipped"
    JOB_DISABLED = "scheduler.job_disabled"

    # Mirrors
    RESOURCE_SYNCED = "mirror.resource_synced"
    CHANGES_PURGED = "mirror.changes_purged"

    # Webhooks
    WEBHOOK_ACCEPTED = "webhook.accepted"
    WEBHOOK_FAILED = "webhook.failed"

    # Reconciliation
    MAPPING_CREATED = "mapping.created"
    MAPPING_RECONCILED = "mapping.reconciled"


@dataclass
class EventMetadata:
    """Metadata attached to every event."""

    event_id: str = field(default_factory=lambda: f"{datetime.now().timestamp():.6f}")
    timestamp: datetime = field(default_factory=datetime.now)
    correlation_id: Optional[str] = field(default_factory=get_correlation_id)
    source: str = "synchub"


@dataclass
class Event:
    """Wrapper for event data with metadata."""

    type: SyncEvent
    data: Dict[str, Any]
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.type.value,
            "data": self.data,
            "metadata": {
                "event_id": self.metadata.event_id,
                "timestamp": self.metadata.timestamp.isoformat(),
                "correlation_id": self.metadata.correlation_id,
                "source": self.metadata.source,
            },
        }


class EventBus:
    """
    Simple async event bus for publish/subscribe pattern.

    Features:
    - Multiple handlers per event, plus wildcard handlers
    - Error isolation (one handler failure doesn't affect others)
    - Bounded event history for debugging
    """

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[SyncEvent, List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []
        self._history: List[Event] = []
        self._max_history = max_history

    def on(
        self, event_type: Union[SyncEvent, None] = None
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to register an event handler.

        Args:
            event_type: Event type to subscribe to, or None for all events
        """

        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(event_type, handler)
            return handler

        return decorator

    def subscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> None:
        """Programmatically subscribe to an event (None for all events)."""
        if event_type is None:
            self._wildcard_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered handler {handler.__name__} for {event_type.value if event_type else '*'}")

    def unsubscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> bool:
        """
        Unsubscribe a handler from an event.

        Returns:
            True if handler was found and removed
        """
        handlers = self._wildcard_handlers if event_type is None else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(
        self,
        event_type: SyncEvent,
        data: Optional[Dict[str, Any]] = None,
        source: str = "synchub",
    ) -> Event:
        """
        Emit an event to all subscribed handlers.

        Handler exceptions are logged and never propagate to the emitter.
        """
        event = Event(
            type=event_type,
            data=data or {},
            metadata=EventMetadata(source=source),
        )

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._wildcard_handlers)

        if not handlers:
            return event

        results = await asyncio.gather(
            *[handler(event.data) for handler in handlers],
            return_exceptions=True,
        )

        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.value}: {result}",
                    extra={"event": event.to_dict()},
                )

        return event

    def get_history(
        self, event_type: Optional[SyncEvent] = None, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Recent events, oldest first, optionally filtered by type."""
        history = self._history
        if event_type:
            history = [e for e in history if e.type == event_type]
        return [e.to_dict() for e in history[-limit:]]

    def clear_handlers(self) -> None:
        """Remove all handlers (useful for testing)."""
        self._handlers.clear()
        self._wildcard_handlers.clear()

    def clear_history(self) -> None:
        self._history.clear()


# Global event bus instance
events = EventBus()
