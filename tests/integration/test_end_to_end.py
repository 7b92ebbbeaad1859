"""
End-to-end flow: poll, detect, match, reconcile, purge.

Project P123 in Procore is linked to deal D45 in HubSpot with ``status``
owned by Procore.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from synchub.matcher import PROCORE_HUBSPOT as PAIR
from synchub.models import ChangeType, Platform, Resolution, SyncStatus, utcnow
from synchub.reconciler import ReconcilePolicy

STATUS_POLICY = ReconcilePolicy(
    name="procore_hubspot_status",
    master=(Platform.PROCORE, "projects"),
    secondary=(Platform.HUBSPOT, "deals"),
    master_fields={"status": "status"},
)


class TestProjectLifecycle:

    @pytest.mark.asyncio
    async def test_poll_reconcile_and_purge(self, services, store, procore, hubspot):
        now = utcnow()

        # First sighting of P123
        procore.put("projects", "P123", name="Tower", status="bidding")
        with patch("synchub.repositories.audit.utcnow", return_value=now - timedelta(days=15)):
            await services.poller.sync_resource(Platform.PROCORE, "projects")

        created = await store.list_change_records(native_id="P123")
        assert len(created) == 1
        assert created[0].change_type == ChangeType.CREATED
        assert await store.get_entity("procore", "projects", "P123") is not None

        # Status moves from bidding to active
        procore.put("projects", "P123", status="active")
        with patch("synchub.repositories.audit.utcnow", return_value=now - timedelta(days=3)):
            await services.poller.sync_resource(Platform.PROCORE, "projects")

        changes = await store.list_change_records(native_id="P123")
        field_changes = [c for c in changes if c.change_type == ChangeType.FIELD_CHANGED]
        assert len(field_changes) == 1
        assert (field_changes[0].field_name, field_changes[0].old_value, field_changes[0].new_value) == (
            "status", "bidding", "active",
        )

        # D45 is mirrored and linked by hand
        hubspot.put("deals", "D45", dealname="Tower Deal", status="bidding")
        await services.poller.sync_resource(Platform.HUBSPOT, "deals")
        mapping = await services.matcher.manual_link(PAIR, "P123", "D45")

        reconciled = await services.resolver.reconcile(mapping, STATUS_POLICY)

        assert reconciled.last_sync_status == SyncStatus.SYNCED
        assert hubspot.writes == [("deals", "D45", "status", "active")]
        assert (await store.get_entity("hubspot", "deals", "D45")).get("status") == "active"
        assert [(c.field, c.resolution, c.resolved) for c in reconciled.conflicts] == [
            ("status", Resolution.MASTER_WINS, True),
        ]

        # Nothing left to propagate: the prior conflict is cleared
        again = await services.resolver.reconcile(await store.get_mapping(mapping.id), STATUS_POLICY)
        assert again.conflicts == []
        assert len(hubspot.writes) == 1

        # Fourteen-day retention
        removed = await services.audit.purge(now - timedelta(days=14))

        assert removed == 1
        remaining = await store.list_change_records(native_id="P123")
        assert [c.change_type for c in remaining] == [ChangeType.FIELD_CHANGED]
