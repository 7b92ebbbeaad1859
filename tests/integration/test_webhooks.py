"""
Integration tests for the webhook pipeline: dispatcher, queue and reactor.
"""
import orjson
import pytest

from synchub.exceptions import PlatformConnectionError
from synchub.models import (
    EntityMapping, InboundEvent, MatchType, Platform, WebhookStatus,
)
from synchub.webhooks import ReactionQueue, WebhookDispatcher

PROCORE_UPDATE = orjson.dumps({
    "resource_name": "Projects",
    "resource_id": 123,
    "event_type": "update",
    "timestamp": "2026-03-01T12:00:00Z",
})


def _hubspot_batch(*object_ids):
    return orjson.dumps([
        {"eventId": 900 + i, "subscriptionType": "deal.propertyChange", "objectId": oid}
        for i, oid in enumerate(object_ids)
    ])


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_acknowledged_once(self, services, store):
        first = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)
        second = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)

        assert first.status == "accepted"
        assert first.accepted == 1
        assert second.status == "already_handled"
        assert second.duplicates == 1
        assert await store.count_webhook_events("procore") == 1
        assert services.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_logged_event_records_key_and_resource(self, services, store):
        ack = await services.dispatcher.receive(PROCORE_UPDATE, "procore")

        event = await store.get_webhook_event(ack.event_ids[0])
        assert event["status"] == WebhookStatus.RECEIVED.value
        assert event["resource_type"] == "projects"
        assert event["resource_id"] == "123"
        assert event["idempotency_key"].startswith("pc_update_123_")

    @pytest.mark.asyncio
    async def test_malformed_body_is_acknowledged_and_audited(self, services, store):
        ack = await services.dispatcher.receive(b"{not json", Platform.HUBSPOT)

        assert ack.rejected == 1
        assert ack.status == "ignored"
        rows = await store.list_audit_logs(action="webhook_receive", status="error")
        assert len(rows) == 1
        assert rows[0]["source"] == "hubspot"
        assert await store.count_webhook_events() == 0

    @pytest.mark.asyncio
    async def test_batch_counts_each_event(self, services):
        ack = await services.dispatcher.receive(_hubspot_batch(45, 46), Platform.HUBSPOT)

        assert ack.accepted == 2
        assert len(ack.event_ids) == 2

    @pytest.mark.asyncio
    async def test_full_queue_counts_as_rejected(self, services, store):
        async def never_called(event_id, event):
            raise AssertionError("workers are not running")

        queue = ReactionQueue(never_called, maxsize=1, workers=1)
        dispatcher = WebhookDispatcher(store, services.guard, services.sink, queue, services.bus)

        ack = await dispatcher.receive(_hubspot_batch(45, 46), Platform.HUBSPOT)

        assert ack.accepted == 1
        assert ack.rejected == 1
        dropped = await store.get_webhook_event(ack.event_ids[1])
        assert dropped["status"] == WebhookStatus.FAILED.value
        assert dropped["error_message"] == "reaction queue full"
        rows = await store.list_audit_logs(action="webhook_enqueue")
        assert rows[0]["entity_id"] == "46"


    @pytest.mark.asyncio
    async def test_store_failure_is_acknowledged_and_audited(self, services, store, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database is locked")

        with monkeypatch.context() as m:
            m.setattr(store, "claim_webhook_event", broken)
            ack = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)

        assert ack.rejected == 1
        assert ack.accepted == 0
        rows = await store.list_audit_logs(action="webhook_receive", status="error")
        assert rows[0]["error_message"] == "database is locked"
        assert rows[0]["entity_id"] == "123"

        redelivered = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)
        assert redelivered.accepted == 1

    @pytest.mark.asyncio
    async def test_events_without_timestamps_are_distinct(self, services, store):
        first = orjson.dumps({"resource_name": "Projects", "resource_id": 1, "event_type": "update"})
        second = orjson.dumps({
            "resource_name": "Projects", "resource_id": 1, "event_type": "update", "company_id": 2,
        })

        a = await services.dispatcher.receive(first, Platform.PROCORE)
        b = await services.dispatcher.receive(second, Platform.PROCORE)
        again = await services.dispatcher.receive(first, Platform.PROCORE)

        assert a.accepted == 1
        assert b.accepted == 1
        assert again.duplicates == 1
        assert await store.count_webhook_events("procore") == 2

class TestReactor:

    async def _log(self, store, event: InboundEvent) -> int:
        return await store.insert_webhook_event(
            source=event.source.value,
            status=WebhookStatus.RECEIVED.value,
            payload={},
            event_type=event.event_type,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
        )

    @pytest.mark.asyncio
    async def test_refetches_mirrors_and_reconciles(
        self, services, store, procore, hubspot, make_entity
    ):
        procore.put("projects", "123", name="Tower", project_number="7")
        hubspot.put("deals", "45", dealname="Old name", project_number="7")
        await store.upsert_entity(make_entity(
            "hubspot", "deals", "45", dealname="Old name", project_number="7",
        ))
        await store.insert_mapping(EntityMapping(
            ids_by_platform={"procore": "123", "hubspot": "45"}, match_type=MatchType.EXACT,
        ))
        event = InboundEvent(Platform.PROCORE, "update", "projects", "123")
        event_id = await self._log(store, event)

        await services.reactor.react(event_id, event)

        logged = await store.get_webhook_event(event_id)
        assert logged["status"] == WebhookStatus.PROCESSED.value
        assert logged["processing_time_ms"] is not None
        assert await store.get_entity("procore", "projects", "123") is not None
        changes = await store.list_change_records(native_id="123")
        assert len(changes) == 1
        assert hubspot.writes == [("deals", "45", "dealname", "Tower")]

    @pytest.mark.asyncio
    async def test_deletion_is_skipped(self, services, store, procore):
        event = InboundEvent(Platform.PROCORE, "delete", "projects", "123")
        event_id = await self._log(store, event)

        await services.reactor.react(event_id, event)

        assert (await store.get_webhook_event(event_id))["status"] == WebhookStatus.SKIPPED.value
        assert procore.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_vanished_resource_is_skipped(self, services, store):
        event = InboundEvent(Platform.HUBSPOT, "deal.propertyChange", "deals", "404")
        event_id = await self._log(store, event)

        await services.reactor.react(event_id, event)

        assert (await store.get_webhook_event(event_id))["status"] == WebhookStatus.SKIPPED.value

    @pytest.mark.asyncio
    async def test_fetch_failure_is_recorded(self, services, store, hubspot):
        hubspot.fetch_error = PlatformConnectionError("timeout", platform="hubspot")
        event = InboundEvent(Platform.HUBSPOT, "deal.propertyChange", "deals", "45")
        event_id = await self._log(store, event)

        await services.reactor.react(event_id, event)

        logged = await store.get_webhook_event(event_id)
        assert logged["status"] == WebhookStatus.FAILED.value
        assert "timeout" in logged["error_message"]
        rows = await store.list_audit_logs(action="webhook_react", status="error")
        assert rows[0]["entity_id"] == "45"


class TestPipeline:

    @pytest.mark.asyncio
    async def test_accepted_event_is_processed_by_workers(self, services, store, companycam):
        companycam.put("projects", "77", name="Tower")
        body = orjson.dumps({
            "id": "evt-1",
            "event_type": "project.updated",
            "payload": {"project": {"id": 77}},
        })
        await services.queue.start()
        try:
            ack = await services.dispatcher.receive(body, Platform.COMPANYCAM)
            await services.queue.join()
        finally:
            await services.queue.stop()

        logged = await store.get_webhook_event(ack.event_ids[0])
        assert logged["status"] == WebhookStatus.PROCESSED.value
        mirror = await store.get_entity("companycam", "projects", "77")
        assert mirror.get("name") == "Tower"


    @pytest.mark.asyncio
    async def test_redelivery_causes_no_second_reaction(
        self, services, store, procore, hubspot, make_entity
    ):
        procore.put("projects", "123", name="Tower", project_number="7")
        hubspot.put("deals", "45", dealname="Old name", project_number="7")
        await store.upsert_entity(make_entity(
            "hubspot", "deals", "45", dealname="Old name", project_number="7",
        ))
        await store.insert_mapping(EntityMapping(
            ids_by_platform={"procore": "123", "hubspot": "45"}, match_type=MatchType.EXACT,
        ))

        await services.queue.start()
        try:
            first = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)
            await services.queue.join()
            second = await services.dispatcher.receive(PROCORE_UPDATE, Platform.PROCORE)
            await services.queue.join()
        finally:
            await services.queue.stop()

        assert first.accepted == 1
        assert second.duplicates == 1
        assert len(await store.list_change_records(native_id="123")) == 1
        assert hubspot.writes == [("deals", "45", "dealname", "Tower")]
        assert procore.fetch_calls == 1
