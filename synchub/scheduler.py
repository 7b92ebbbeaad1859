"""
Poll job scheduler using APScheduler.

One ``JobHandle`` per reconciliation job (per platform, per sub-domain).
Each handle owns an interval timer, a process-local single-flight flag and
the persisted configuration (enabled, interval, last result).

Features:
- Single-flight: a tick that lands while a run is in flight is skipped, not queued
- Guaranteed release of the running flag regardless of outcome
- Self-disable on authentication failure (``disabled_reason="auth_expired"``)
- Transient failures only recorded; the next tick retries naturally
- Configuration persisted and reloaded at process start

Usage:
    scheduler = Scheduler(store, sink)
    scheduler.register("procore_sync", poller.job(Platform.PROCORE), 60)
    await scheduler.start()

    await scheduler.enable("procore_sync", interval_minutes=15)
    started = await scheduler.trigger("procore_sync")
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from synchub.audit import AuditLogSink
from synchub.config import config
from synchub.events import EventBus, SyncEvent, events as default_events
from synchub.exceptions import JobNotFoundError, PlatformAuthError, ValidationError
from synchub.models import AuditStatus, PollJobState, utcnow
from synchub.observability import (
    get_logger, correlation_context, generate_correlation_id, Timer,
)

logger = get_logger(__name__)

JobBody = Callable[[], Awaitable[Dict[str, Any]]]

AUTH_EXPIRED = "auth_expired"


@dataclass
class JobHandle:
    """Runtime handle for one registered job."""
    name: str
    body: JobBody
    state: PollJobState
    description: str = ""
    task: Optional[asyncio.Task] = None

    @property
    def aps_id(self) -> str:
        return f"poll:{self.name}"


class Scheduler:
    """
    Explicit scheduler service; tests instantiate independent copies.

    Args:
        store: DuckDB store (job configuration persistence)
        sink: Audit-log sink for self-disable rows
        bus: Event bus (defaults to the global one)
        aps: Underlying APScheduler instance
        immediate_run_delay_seconds: Delay before the first run after enable()
    """

    def __init__(
        self,
        store,
        sink: AuditLogSink,
        bus: Optional[EventBus] = None,
        aps: Optional[AsyncIOScheduler] = None,
        immediate_run_delay_seconds: Optional[int] = None,
    ):
        self.store = store
        self.sink = sink
        self.bus = bus or default_events
        self._aps = aps or AsyncIOScheduler(timezone=timezone.utc)
        self._handles: Dict[str, JobHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._started = False
        self.immediate_run_delay = (
            immediate_run_delay_seconds
            if immediate_run_delay_seconds is not None
            else config.scheduler.immediate_run_delay_seconds
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # REGISTRATION & LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def register(
        self,
        name: str,
        body: JobBody,
        interval_minutes: int,
        description: str = "",
        enabled: bool = False,
    ) -> JobHandle:
        """Register a job with its default configuration (persisted config wins on load)."""
        handle = JobHandle(
            name=name,
            body=body,
            description=description,
            state=PollJobState(job_name=name, enabled=enabled, interval_minutes=interval_minutes),
        )
        self._handles[name] = handle
        return handle

    def handle(self, name: str) -> JobHandle:
        try:
            return self._handles[name]
        except KeyError:
            raise JobNotFoundError(name) from None

    @property
    def job_names(self) -> List[str]:
        return list(self._handles)

    async def load(self) -> None:
        """Reload persisted configuration and arm every enabled job."""
        persisted = await self.store.load_job_states()
        for name, handle in self._handles.items():
            saved = persisted.get(name)
            if saved:
                saved.is_running = handle.state.is_running
                handle.state = saved
            else:
                await self.store.save_job_state(handle.state)

            if handle.state.enabled:
                self._arm(handle, run_immediately=False)

        enabled = [n for n, h in self._handles.items() if h.state.enabled]
        logger.info(
            f"Loaded {len(self._handles)} poll jobs ({len(enabled)} enabled)",
            extra={"enabled_jobs": enabled},
        )

    async def start(self) -> None:
        """Load configuration and start the timer loop."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        self._aps.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        await self.load()
        self._aps.start()
        self._started = True
        logger.info("Poll scheduler started")

    async def shutdown(self, wait: bool = True) -> None:
        """Stop timers; optionally wait for in-flight out-of-band runs."""
        if self._started:
            self._aps.shutdown(wait=False)
            self._started = False
            logger.info("Poll scheduler stopped")
        if wait and self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._started

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            f"Job {event.job_id} missed scheduled execution",
            extra={"job_id": event.job_id},
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _arm(self, handle: JobHandle, run_immediately: bool) -> None:
        """(Re)create the repeating timer for a job."""
        self._cancel(handle)
        kwargs: Dict[str, Any] = {}
        if run_immediately:
            kwargs["next_run_time"] = datetime.now(timezone.utc) + timedelta(
                seconds=self.immediate_run_delay
            )
        self._aps.add_job(
            self._tick,
            trigger=IntervalTrigger(minutes=handle.state.interval_minutes),
            args=[handle.name],
            id=handle.aps_id,
            name=handle.name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=config.scheduler.misfire_grace_time,
            replace_existing=True,
            **kwargs,
        )

    def _cancel(self, handle: JobHandle) -> None:
        if self._aps.get_job(handle.aps_id):
            self._aps.remove_job(handle.aps_id)

    def is_armed(self, name: str) -> bool:
        """True when a timer exists for the job."""
        return self._aps.get_job(self.handle(name).aps_id) is not None

    def next_run_time(self, name: str) -> Optional[datetime]:
        job = self._aps.get_job(self.handle(name).aps_id)
        return getattr(job, "next_run_time", None) if job else None

    async def _tick(self, name: str) -> None:
        """Timer callback: skip if a run is in flight, otherwise run inline."""
        handle = self.handle(name)
        if handle.state.is_running:
            logger.info(f"Job {name} still running, skipping tick", extra={"job": name})
            await self.bus.emit(SyncEvent.JOB_SKIPPED, {"job_name": name}, source="scheduler")
            return
        handle.state.is_running = True
        await self._execute(handle)

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    async def enable(
        self, name: str, interval_minutes: Optional[int] = None, run_immediately: bool = True
    ) -> PollJobState:
        """Persist enabled=True and arm a repeating timer."""
        handle = self.handle(name)
        interval = interval_minutes or handle.state.interval_minutes
        if interval < 1:
            raise ValidationError("intervalMinutes", "must be at least 1", interval)

        self._cancel(handle)
        handle.state.enabled = True
        handle.state.interval_minutes = interval
        handle.state.disabled_reason = None
        await self.store.save_job_state(handle.state)
        self._arm(handle, run_immediately)

        logger.info(f"Enabled job {name} every {interval} min", extra={"job": name})
        return handle.state

    async def disable(self, name: str, reason: Optional[str] = None) -> PollJobState:
        """Cancel the timer and persist enabled=False. An in-flight run completes."""
        handle = self.handle(name)
        self._cancel(handle)
        handle.state.enabled = False
        handle.state.disabled_reason = reason
        await self.store.save_job_state(handle.state)

        logger.info(f"Disabled job {name}", extra={"job": name, "reason": reason})
        return handle.state

    async def configure(self, name: str, enabled: bool, interval_minutes: int) -> PollJobState:
        """Apply an operator config change."""
        if interval_minutes < 1:
            raise ValidationError("intervalMinutes", "must be at least 1", interval_minutes)
        if enabled:
            return await self.enable(name, interval_minutes)
        handle = self.handle(name)
        handle.state.interval_minutes = interval_minutes
        return await self.disable(name)

    async def trigger(self, name: str) -> bool:
        """
        Start one immediate out-of-band run.

        Returns:
            True if a run was started, False if one is already running
        """
        handle = self.handle(name)
        if handle.state.is_running:
            logger.info(f"Job {name} already running, trigger ignored", extra={"job": name})
            return False

        handle.state.is_running = True
        task = asyncio.create_task(self._execute(handle))
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Manually triggered job {name}", extra={"job": name})
        return True

    async def wait_idle(self, name: str) -> None:
        """Wait for an out-of-band run of ``name`` to finish."""
        task = self.handle(name).task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def get_state(self, name: str) -> PollJobState:
        return self.handle(name).state

    def get_jobs(self) -> List[Dict[str, Any]]:
        """All jobs with their state and next run time."""
        jobs = []
        for name, handle in self._handles.items():
            info = handle.state.to_dict()
            next_run = self.next_run_time(name)
            info["description"] = handle.description
            info["next_run"] = next_run.isoformat() if next_run else None
            jobs.append(info)
        return jobs

    # ═══════════════════════════════════════════════════════════════════════════
    # JOB EXECUTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def _execute(self, handle: JobHandle) -> Optional[Dict[str, Any]]:
        """
        Run a job body. Caller has already set ``is_running``.

        The flag is released in ``finally`` before state is persisted.
        """
        state = handle.state
        started_at = utcnow()
        result: Optional[Dict[str, Any]] = None

        with correlation_context(generate_correlation_id("job")):
            try:
                await self.bus.emit(SyncEvent.JOB_STARTED, {"job_name": handle.name}, source="scheduler")
                with Timer(handle.name) as timer:
                    result = await handle.body()

                state.last_result = {
                    "status": "success",
                    "duration_ms": round(timer.elapsed_ms, 2),
                    **(result or {}),
                }
                state.error_count = 0
                logger.info(f"Job {handle.name} completed", extra={"job": handle.name})
                await self.bus.emit(
                    SyncEvent.JOB_COMPLETED,
                    {"job_name": handle.name, "duration_ms": round(timer.elapsed_ms, 2)},
                    source="scheduler",
                )

            except PlatformAuthError as e:
                await self._self_disable(handle, e)

            except Exception as e:
                state.last_result = {"status": "error", "error": str(e)}
                state.error_count += 1
                logger.error(
                    f"Job {handle.name} failed: {e}",
                    extra={"job": handle.name, "error_count": state.error_count},
                    exc_info=True,
                )
                await self.bus.emit(
                    SyncEvent.JOB_FAILED,
                    {"job_name": handle.name, "error": str(e)},
                    source="scheduler",
                )

            finally:
                state.is_running = False
                state.last_run_at = started_at
                try:
                    await self.store.save_job_state(state)
                except Exception as e:
                    logger.error(f"Could not persist state for job {handle.name}: {e}")

        return result

    async def _self_disable(self, handle: JobHandle, error: PlatformAuthError) -> None:
        """Turn a job off after an authentication failure; no retry this cycle."""
        state = handle.state
        self._cancel(handle)
        state.enabled = False
        state.disabled_reason = AUTH_EXPIRED
        state.error_count += 1
        state.last_result = {"status": "error", "error": str(error), "disabled": True}

        logger.error(
            f"Job {handle.name} disabled: authentication failed",
            extra={"job": handle.name, "platform": error.platform},
        )

        try:
            await self.sink.record(
                action=handle.name,
                entity_type=None,
                entity_id=None,
                status=AuditStatus.ERROR,
                details={"reason": AUTH_EXPIRED, "platform": error.platform},
                source=error.platform,
                error_message=str(error),
            )
        except Exception as e:
            logger.error(f"Could not write audit row for {handle.name}: {e}")

        await self.bus.emit(
            SyncEvent.JOB_DISABLED,
            {"job_name": handle.name, "reason": AUTH_EXPIRED, "platform": error.platform},
            source="scheduler",
        )
