"""Poll job configuration and manual triggers."""
from fastapi import APIRouter, HTTPException, Request

from synchub.exceptions import JobNotFoundError, ValidationError
from synchub.models import PollJobState
from synchub.scheduler import Scheduler
from web.config import ADMIN_RATE_LIMIT
from web.schemas import JobConfigRequest, JobConfigResponse, JobsResponse, TriggerResponse
from ._deps import limiter, get_logger, get_services

router = APIRouter(prefix="/automation")
logger = get_logger(__name__)


def _job_config(scheduler: Scheduler, state: PollJobState) -> dict:
    next_run = scheduler.next_run_time(state.job_name)
    return {
        "jobName": state.job_name,
        "enabled": state.enabled,
        "intervalMinutes": state.interval_minutes,
        "isRunning": state.is_running,
        "lastPollAt": state.last_run_at.isoformat() if state.last_run_at else None,
        "lastPollResult": state.last_result,
        "disabledReason": state.disabled_reason,
        "errorCount": state.error_count,
        "description": scheduler.handle(state.job_name).description,
        "nextRun": next_run.isoformat() if next_run else None,
    }


def _state_or_404(scheduler: Scheduler, job: str) -> PollJobState:
    try:
        return scheduler.get_state(job)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job '{job}' not found")


@router.get("/jobs", response_model=JobsResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_jobs(request: Request):
    """All registered poll jobs."""
    scheduler = get_services(request).scheduler
    return {
        "jobs": [_job_config(scheduler, scheduler.get_state(name)) for name in scheduler.job_names]
    }


@router.get("/{job}/config", response_model=JobConfigResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def get_job_config(request: Request, job: str):
    scheduler = get_services(request).scheduler
    return _job_config(scheduler, _state_or_404(scheduler, job))


@router.post("/{job}/config", response_model=JobConfigResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def set_job_config(request: Request, job: str, body: JobConfigRequest):
    """Enable/disable a job or change its interval. Echoes the persisted config."""
    scheduler = get_services(request).scheduler
    _state_or_404(scheduler, job)

    try:
        state = await scheduler.configure(job, body.enabled, body.intervalMinutes)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        f"Job {job} configured",
        extra={"job": job, "enabled": body.enabled, "interval_minutes": body.intervalMinutes},
    )
    return _job_config(scheduler, state)


@router.post("/{job}/trigger", response_model=TriggerResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def trigger_job(request: Request, job: str):
    """Start one immediate run unless one is already in flight."""
    scheduler = get_services(request).scheduler
    _state_or_404(scheduler, job)

    started = await scheduler.trigger(job)
    return {"started": started, "status": "started" if started else "already_running"}
