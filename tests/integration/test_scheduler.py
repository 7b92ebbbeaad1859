"""
Integration tests for synchub/scheduler.py

Each test builds an independent Scheduler over the in-memory store; the
APScheduler loop is only started where timers are under test.
"""
import asyncio

import pytest

from synchub.audit import AuditLogSink
from synchub.events import SyncEvent
from synchub.exceptions import (
    JobNotFoundError,
    PlatformAuthError,
    PlatformConnectionError,
    ValidationError,
)
from synchub.scheduler import AUTH_EXPIRED, Scheduler


class Gate:
    """Job body that blocks until released and counts its runs."""

    def __init__(self):
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.runs = 0

    async def __call__(self):
        self.runs += 1
        self.started.set()
        await self.release.wait()
        return {"runs": self.runs}


@pytest.fixture
async def scheduler(store, bus):
    scheduler = Scheduler(store, AuditLogSink(store), bus, immediate_run_delay_seconds=3600)
    yield scheduler
    await scheduler.shutdown()


class TestTrigger:

    @pytest.mark.asyncio
    async def test_trigger_runs_and_records_success(self, scheduler, store):
        async def body():
            return {"created": 2}

        scheduler.register("procore_sync", body, 60)

        assert await scheduler.trigger("procore_sync") is True
        await scheduler.wait_idle("procore_sync")

        state = scheduler.get_state("procore_sync")
        assert state.is_running is False
        assert state.last_run_at is not None
        assert state.last_result["status"] == "success"
        assert state.last_result["created"] == 2

        persisted = await store.get_job_state("procore_sync")
        assert persisted.last_result["created"] == 2

    @pytest.mark.asyncio
    async def test_single_flight(self, scheduler):
        """A second trigger while running reports already running."""
        gate = Gate()
        scheduler.register("hubspot_sync", gate, 60)

        assert await scheduler.trigger("hubspot_sync") is True
        await gate.started.wait()
        assert await scheduler.trigger("hubspot_sync") is False

        gate.release.set()
        await scheduler.wait_idle("hubspot_sync")

        assert gate.runs == 1
        assert await scheduler.trigger("hubspot_sync") is True
        await scheduler.wait_idle("hubspot_sync")
        assert gate.runs == 2

    @pytest.mark.asyncio
    async def test_tick_skips_while_running(self, scheduler, bus):
        gate = Gate()
        scheduler.register("companycam_sync", gate, 60)

        await scheduler.trigger("companycam_sync")
        await gate.started.wait()
        await scheduler._tick("companycam_sync")

        assert gate.runs == 1
        assert bus.get_history(SyncEvent.JOB_SKIPPED)[-1]["data"]["job_name"] == "companycam_sync"

        gate.release.set()
        await scheduler.wait_idle("companycam_sync")

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(JobNotFoundError):
            await scheduler.trigger("nope")


class TestFailureClassification:

    @pytest.mark.asyncio
    async def test_auth_failure_self_disables(self, scheduler, store, bus):
        async def body():
            raise PlatformAuthError("token expired", platform="procore", status_code=401)

        scheduler.register("procore_sync", body, 60)
        await scheduler.enable("procore_sync", run_immediately=False)
        assert scheduler.is_armed("procore_sync")

        await scheduler.trigger("procore_sync")
        await scheduler.wait_idle("procore_sync")

        state = scheduler.get_state("procore_sync")
        assert state.enabled is False
        assert state.disabled_reason == AUTH_EXPIRED
        assert state.error_count == 1
        assert state.is_running is False
        assert not scheduler.is_armed("procore_sync")

        rows = await store.list_audit_logs(action="procore_sync", status="error")
        assert len(rows) == 1
        assert rows[0]["details"]["reason"] == AUTH_EXPIRED

        persisted = await store.get_job_state("procore_sync")
        assert persisted.enabled is False
        assert persisted.disabled_reason == AUTH_EXPIRED
        assert bus.get_history(SyncEvent.JOB_DISABLED)

    @pytest.mark.asyncio
    async def test_transient_failure_stays_enabled(self, scheduler):
        async def body():
            raise PlatformConnectionError("timeout", platform="hubspot")

        scheduler.register("hubspot_sync", body, 60)
        await scheduler.enable("hubspot_sync", run_immediately=False)

        for _ in range(2):
            await scheduler.trigger("hubspot_sync")
            await scheduler.wait_idle("hubspot_sync")

        state = scheduler.get_state("hubspot_sync")
        assert state.enabled is True
        assert state.error_count == 2
        assert state.last_result == {"status": "error", "error": "timeout"}
        assert scheduler.is_armed("hubspot_sync")

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, scheduler):
        calls = {"n": 0}

        async def body():
            calls["n"] += 1
            if calls["n"] == 1:
                raise PlatformConnectionError("timeout")
            return {}

        scheduler.register("companycam_sync", body, 60)

        for _ in range(2):
            await scheduler.trigger("companycam_sync")
            await scheduler.wait_idle("companycam_sync")

        assert scheduler.get_state("companycam_sync").error_count == 0


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_enable_persists_and_arms(self, scheduler, store):
        async def body():
            return {}

        scheduler.register("procore_sync", body, 60)

        state = await scheduler.enable("procore_sync", interval_minutes=15)

        assert state.enabled is True
        assert state.interval_minutes == 15
        assert scheduler.is_armed("procore_sync")
        persisted = await store.get_job_state("procore_sync")
        assert persisted.enabled is True
        assert persisted.interval_minutes == 15

    @pytest.mark.asyncio
    async def test_disable_cancels_timer(self, scheduler, store):
        async def body():
            return {}

        scheduler.register("procore_sync", body, 60)
        await scheduler.enable("procore_sync")

        await scheduler.disable("procore_sync")

        assert not scheduler.is_armed("procore_sync")
        assert (await store.get_job_state("procore_sync")).enabled is False

    @pytest.mark.asyncio
    async def test_interval_must_be_positive(self, scheduler):
        async def body():
            return {}

        scheduler.register("procore_sync", body, 60)

        with pytest.raises(ValidationError):
            await scheduler.configure("procore_sync", enabled=True, interval_minutes=0)

    @pytest.mark.asyncio
    async def test_configure_disabled_keeps_interval(self, scheduler):
        async def body():
            return {}

        scheduler.register("procore_sync", body, 60)

        state = await scheduler.configure("procore_sync", enabled=False, interval_minutes=5)

        assert state.enabled is False
        assert state.interval_minutes == 5

    @pytest.mark.asyncio
    async def test_persisted_config_is_reloaded(self, store, bus):
        async def body():
            return {}

        first = Scheduler(store, AuditLogSink(store), bus)
        first.register("procore_sync", body, 60)
        first.register("hubspot_sync", body, 60)
        await first.load()
        await first.enable("procore_sync", interval_minutes=10)
        await first.shutdown()

        second = Scheduler(store, AuditLogSink(store), bus)
        second.register("procore_sync", body, 60)
        second.register("hubspot_sync", body, 60)
        await second.load()

        assert second.get_state("procore_sync").enabled is True
        assert second.get_state("procore_sync").interval_minutes == 10
        assert second.is_armed("procore_sync")
        assert second.get_state("hubspot_sync").enabled is False
        assert not second.is_armed("hubspot_sync")
        await second.shutdown()

    @pytest.mark.asyncio
    async def test_get_jobs_lists_next_run(self, scheduler):
        async def body():
            return {}

        scheduler.register("procore_sync", body, 60, "Mirror Procore")
        scheduler.register("maintenance", body, 1440, enabled=True)
        await scheduler.start()

        jobs = {job["job_name"]: job for job in scheduler.get_jobs()}

        assert jobs["procore_sync"]["description"] == "Mirror Procore"
        assert jobs["procore_sync"]["next_run"] is None
        assert jobs["maintenance"]["enabled"] is True
        assert jobs["maintenance"]["next_run"] is not None
