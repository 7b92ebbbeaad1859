"""
Integration tests for synchub/idempotency.py against the DuckDB store.
"""
from datetime import datetime, timedelta

import pytest

from synchub.idempotency import IdempotencyGuard
from synchub.models import InboundEvent, Platform


class TestDeriveKey:
    """Key derivation does not touch the store."""

    def setup_method(self):
        self.guard = IdempotencyGuard(store=None, ttl_days=7, bucket_seconds=60)

    def test_event_id_wins(self):
        key = self.guard.derive_key(
            Platform.HUBSPOT, "45", "deal.propertyChange",
            occurred_at=datetime(2026, 3, 1, 12, 0), event_id="991",
        )
        assert key == "hs_deal.propertyChange_45_e991"

    def test_timestamp_is_bucketed(self):
        early = self.guard.derive_key(Platform.PROCORE, "123", "update", datetime(2026, 3, 1, 12, 0, 5))
        late = self.guard.derive_key(Platform.PROCORE, "123", "update", datetime(2026, 3, 1, 12, 0, 55))
        next_minute = self.guard.derive_key(Platform.PROCORE, "123", "update", datetime(2026, 3, 1, 12, 1, 0))

        assert early == late
        assert early != next_minute
        assert early.startswith("pc_update_123_")

    def test_missing_timestamp_uses_payload_digest(self):
        first = self.guard.derive_key(
            "companycam", "9", "project.created", payload={"id": 9, "name": "Tower"},
        )
        same = self.guard.derive_key(
            "companycam", "9", "project.created", payload={"name": "Tower", "id": 9},
        )
        other = self.guard.derive_key(
            "companycam", "9", "project.created", payload={"id": 9, "name": "Annex"},
        )

        assert first == same
        assert first != other
        assert first.startswith("cc_project.created_9_d")

    def test_no_timestamp_and_no_payload(self):
        assert self.guard.derive_key("companycam", "9", "project.created") == "cc_project.created_9_na"

    def test_event_ids_split_one_bucket(self):
        early = self.guard.derive_key(
            Platform.PROCORE, "123", "update", datetime(2026, 3, 1, 12, 0, 5), event_id="1",
        )
        late = self.guard.derive_key(
            Platform.PROCORE, "123", "update", datetime(2026, 3, 1, 12, 0, 40), event_id="2",
        )

        assert early != late

    def test_differs_by_resource_and_type(self):
        stamp = datetime(2026, 3, 1, 12, 0)
        keys = {
            self.guard.derive_key(Platform.PROCORE, "1", "update", stamp),
            self.guard.derive_key(Platform.PROCORE, "2", "update", stamp),
            self.guard.derive_key(Platform.PROCORE, "1", "create", stamp),
            self.guard.derive_key(Platform.HUBSPOT, "1", "update", stamp),
        }
        assert len(keys) == 4


class TestClaim:

    @pytest.fixture
    def guard(self, store):
        return IdempotencyGuard(store, ttl_days=7)

    @pytest.mark.asyncio
    async def test_first_claim_wins_second_is_duplicate(self, guard):
        assert await guard.claim("pc_update_1_na", Platform.PROCORE, "update") is True
        assert await guard.claim("pc_update_1_na", Platform.PROCORE, "update") is False
        assert await guard.is_handled("pc_update_1_na") is True

    @pytest.mark.asyncio
    async def test_expired_key_is_rearmed(self, guard):
        start = datetime(2026, 3, 1, 12, 0)
        assert await guard.claim("hs_x_1_na", Platform.HUBSPOT, now=start)

        later = start + timedelta(days=8)
        assert await guard.claim("hs_x_1_na", Platform.HUBSPOT, now=later) is True
        assert await guard.claim("hs_x_1_na", Platform.HUBSPOT, now=later) is False

    @pytest.mark.asyncio
    async def test_claim_event_logs_once(self, guard, store):
        event = InboundEvent(Platform.HUBSPOT, "deal.creation", "deals", "45", event_id="1")

        first = await guard.claim_event("hs_deal.creation_45_e1", event)
        second = await guard.claim_event("hs_deal.creation_45_e1", event)

        assert first is not None
        assert second is None
        assert await store.count_webhook_events("hubspot") == 1
        logged = await store.get_webhook_event(first)
        assert logged["idempotency_key"] == "hs_deal.creation_45_e1"
        assert logged["status"] == "received"

    @pytest.mark.asyncio
    async def test_reap_removes_only_expired(self, guard):
        old = datetime(2020, 1, 1)
        await guard.claim("old", Platform.PROCORE, now=old)
        await guard.claim("fresh", Platform.PROCORE)

        removed = await guard.reap()

        assert removed == 1
        assert await guard.is_handled("old") is False
        assert await guard.is_handled("fresh") is True
