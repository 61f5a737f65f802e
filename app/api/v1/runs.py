"""Prompt batch API endpoints: trigger batches and check their status."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_batch_worker, get_run_registry, require_cron_secret
from app.core.exceptions import BatchInProgressError, DomainNotFoundError, NotFoundError
from app.core.rate_limit import DOMAIN_TRIGGER_LIMIT, SWEEP_TRIGGER_LIMIT, limiter
from app.db.postgres import get_db
from app.schemas.run import JobStatusResponse, RunStatusResponse, RunTriggerRequest, SweepTriggerRequest
from app.services.batch_lock import get_active_lock
from app.services.prompt_runner import BatchWorker
from app.services.run_status import RunStatusRegistry, recompute_status, start_of_utc_day
from app.services.store import VisibilityStore

router = APIRouter(tags=["runs"])


@router.post("/domains/{domain_id}/runs", response_model=JobStatusResponse, status_code=202)
@limiter.limit(DOMAIN_TRIGGER_LIMIT)
async def trigger_domain_run(
    request: Request,
    domain_id: str,
    body: RunTriggerRequest | None = None,
    db: AsyncSession = Depends(get_db),
    worker: BatchWorker = Depends(get_batch_worker),
):
    """Queue every active prompt of a domain. Returns immediately with a job id."""
    provider = (body or RunTriggerRequest()).provider
    store = VisibilityStore(db)
    if await store.get_domain(domain_id) is None:
        raise DomainNotFoundError(domain_id)

    # A batch started by the Celery worker or the CLI holds the shared lock
    lock = await get_active_lock(db, domain_id)
    if lock is not None:
        raise BatchInProgressError(domain_id, lock.holder)

    total = await store.count_active_prompts(domain_id)
    job = worker.submit(provider.value, domain_id=domain_id, total=total)
    return JobStatusResponse(**job.as_dict())


@router.post(
    "/runs",
    response_model=JobStatusResponse,
    status_code=202,
    dependencies=[Depends(require_cron_secret)],
)
@limiter.limit(SWEEP_TRIGGER_LIMIT)
async def trigger_sweep(
    request: Request,
    body: SweepTriggerRequest | None = None,
    worker: BatchWorker = Depends(get_batch_worker),
):
    """Queue a sweep over every domain with active prompts (optionally one workspace)."""
    body = body or SweepTriggerRequest()
    job = worker.submit(body.provider.value, workspace_id=body.workspace_id)
    return JobStatusResponse(**job.as_dict())


@router.get("/runs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, registry: RunStatusRegistry = Depends(get_run_registry)):
    job = registry.get(job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return JobStatusResponse(**job.as_dict())


@router.post("/runs/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(job_id: str, registry: RunStatusRegistry = Depends(get_run_registry)):
    """Stop a job after the prompt currently in flight."""
    job = registry.cancel(job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return JobStatusResponse(**job.as_dict())


@router.get("/domains/{domain_id}/run-status", response_model=RunStatusResponse)
async def get_domain_run_status(
    domain_id: str,
    db: AsyncSession = Depends(get_db),
    registry: RunStatusRegistry = Depends(get_run_registry),
):
    """Status of the latest batch for a domain.

    Falls back to today's stored runs when this process has no record
    (for example after a restart, or for batches run by the Celery worker).
    """
    job = registry.get_for_domain(domain_id)
    if job is not None:
        return RunStatusResponse(status=job.status.value, progress=job.progress, total=job.total, job_id=job.job_id)

    store = VisibilityStore(db)
    if await store.get_domain(domain_id) is None:
        raise DomainNotFoundError(domain_id)

    total = await store.count_active_prompts(domain_id)
    attempted = await store.count_prompts_attempted_since(domain_id, start_of_utc_day())
    return RunStatusResponse(**recompute_status(total, attempted))
