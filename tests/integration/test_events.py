"""
Integration tests for synchub/events.py

Tests the event-driven publish/subscribe system.
"""
import pytest
from typing import Dict, Any, List

from synchub.events import EventBus, SyncEvent, Event, EventMetadata
from synchub.observability import correlation_context


class TestEventBus:
    """Tests for EventBus class."""

    def setup_method(self):
        """Create fresh event bus for each test."""
        self.bus = EventBus()

    @pytest.mark.asyncio
    async def test_emit_with_no_handlers(self):
        """Emitting event with no handlers succeeds silently."""
        event = await self.bus.emit(SyncEvent.JOB_STARTED, {"job_name": "procore_sync"})
        assert event.type == SyncEvent.JOB_STARTED
        assert event.data["job_name"] == "procore_sync"

    @pytest.mark.asyncio
    async def test_subscribe_and_receive(self):
        received: List[Dict[str, Any]] = []

        @self.bus.on(SyncEvent.RESOURCE_SYNCED)
        async def handler(data: dict):
            received.append(data)

        await self.bus.emit(SyncEvent.RESOURCE_SYNCED, {"created": 3})

        assert received == [{"created": 3}]

    @pytest.mark.asyncio
    async def test_wildcard_handler(self):
        """Wildcard handler receives all events."""
        received = []

        @self.bus.on()
        async def wildcard_handler(data: dict):
            received.append(data)

        await self.bus.emit(SyncEvent.JOB_STARTED, {"n": 1})
        await self.bus.emit(SyncEvent.JOB_DISABLED, {"n": 2})

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_handler_isolation(self):
        """Failing handler doesn't affect other handlers or the emitter."""
        results = []

        @self.bus.on(SyncEvent.MAPPING_CREATED)
        async def failing_handler(data: dict):
            raise ValueError("Handler error")

        @self.bus.on(SyncEvent.MAPPING_CREATED)
        async def working_handler(data: dict):
            results.append("success")

        await self.bus.emit(SyncEvent.MAPPING_CREATED, {})

        assert results == ["success"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        received = []

        async def handler(data: dict):
            received.append(data)

        self.bus.subscribe(SyncEvent.JOB_FAILED, handler)
        await self.bus.emit(SyncEvent.JOB_FAILED, {"n": 1})

        assert self.bus.unsubscribe(SyncEvent.JOB_FAILED, handler) is True
        assert self.bus.unsubscribe(SyncEvent.JOB_FAILED, handler) is False

        await self.bus.emit(SyncEvent.JOB_FAILED, {"n": 2})
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_get_history_filters_by_type(self):
        await self.bus.emit(SyncEvent.JOB_STARTED, {"n": 1})
        await self.bus.emit(SyncEvent.JOB_COMPLETED, {"n": 2})
        await self.bus.emit(SyncEvent.JOB_STARTED, {"n": 3})

        assert len(self.bus.get_history(limit=10)) == 3
        assert len(self.bus.get_history(event_type=SyncEvent.JOB_STARTED)) == 2

    @pytest.mark.asyncio
    async def test_history_limit(self):
        bus = EventBus(max_history=5)

        for i in range(10):
            await bus.emit(SyncEvent.JOB_STARTED, {"n": i})

        history = bus.get_history()
        assert len(history) == 5
        assert history[-1]["data"]["n"] == 9

    @pytest.mark.asyncio
    async def test_clear_handlers(self):
        received = []

        @self.bus.on(SyncEvent.JOB_SKIPPED)
        async def handler(data):
            received.append(data)

        self.bus.clear_handlers()
        await self.bus.emit(SyncEvent.JOB_SKIPPED, {})

        assert received == []


class TestEvent:
    """Tests for Event class."""

    def test_event_to_dict(self):
        event = Event(type=SyncEvent.JOB_DISABLED, data={"reason": "auth_expired"})
        d = event.to_dict()

        assert d["event_type"] == "scheduler.job_disabled"
        assert d["data"]["reason"] == "auth_expired"
        assert "timestamp" in d["metadata"]

    def test_metadata_captures_correlation_id(self):
        with correlation_context("job-procore_sync"):
            metadata = EventMetadata()

        assert metadata.correlation_id == "job-procore_sync"
        assert metadata.source == "synchub"
