"""Batch job status tracking.

Jobs live in process memory. When the process has no record for a domain,
status is recomputed from the runs stored since the start of the UTC day.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from app.core.exceptions import BatchInProgressError

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_TERMINAL = {RunState.COMPLETED, RunState.CANCELLED}
_ORDER = {RunState.PENDING: 0, RunState.RUNNING: 1, RunState.COMPLETED: 2, RunState.CANCELLED: 2}


@dataclass
class BatchJob:
    """One submitted batch: a single domain, or a sweep when ``domain_id`` is None."""

    provider: str
    domain_id: str | None = None
    workspace_id: str | None = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunState = RunState.PENDING
    progress: int = 0
    total: int = 0
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status not in _TERMINAL

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "domain_id": self.domain_id,
            "provider": self.provider,
            "status": self.status.value,
            "progress": self.progress,
            "total": self.total,
            "error": self.error,
        }


class RunStatusRegistry:
    """In-memory job table. Status only moves forward and progress never decreases."""

    def __init__(self) -> None:
        self._jobs: dict[str, BatchJob] = {}
        self._by_domain: dict[str, str] = {}

    def submit(
        self,
        provider: str,
        domain_id: str | None = None,
        workspace_id: str | None = None,
        total: int = 0,
    ) -> BatchJob:
        if domain_id is not None:
            current = self.get_for_domain(domain_id)
            if current is not None and current.is_active:
                raise BatchInProgressError(domain_id, current.job_id)

        job = BatchJob(provider=provider, domain_id=domain_id, workspace_id=workspace_id, total=total)
        self._jobs[job.job_id] = job
        if domain_id is not None:
            self._by_domain[domain_id] = job.job_id
        logger.info("Job %s submitted (domain=%s, provider=%s)", job.job_id, domain_id, provider)
        return job

    def get(self, job_id: str) -> BatchJob | None:
        return self._jobs.get(job_id)

    def get_for_domain(self, domain_id: str) -> BatchJob | None:
        job_id = self._by_domain.get(domain_id)
        return self._jobs.get(job_id) if job_id else None

    def _move(self, job: BatchJob, state: RunState) -> None:
        if job.status in _TERMINAL or _ORDER[state] < _ORDER[job.status]:
            return
        job.status = state
        if state in _TERMINAL:
            job.finished_at = datetime.now(timezone.utc)

    def start(self, job_id: str, total: int) -> None:
        """Record the prompt count once loaded. The job stays pending until the first attempt."""
        job = self._jobs[job_id]
        if job.status is not RunState.PENDING:
            return
        job.total = total

    def grow_total(self, job_id: str, extra: int) -> None:
        """Sweeps learn their total domain by domain."""
        job = self._jobs[job_id]
        if job.is_active and extra > 0:
            job.total += extra

    def advance(self, job_id: str, step: int = 1) -> None:
        job = self._jobs[job_id]
        if not job.is_active:
            return
        job.progress = min(job.progress + step, job.total) if job.total else job.progress + step
        self._move(job, RunState.RUNNING)

    def complete(self, job_id: str, error: str | None = None) -> None:
        job = self._jobs[job_id]
        if error:
            job.error = error
        self._move(job, RunState.COMPLETED)
        logger.info("Job %s completed (%d/%d)", job_id, job.progress, job.total)

    def cancel(self, job_id: str) -> BatchJob | None:
        """Signal the worker to stop after the current prompt."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        job.cancel_event.set()
        if job.status is RunState.PENDING:
            self._move(job, RunState.CANCELLED)
        return job

    def mark_cancelled(self, job_id: str) -> None:
        self._move(self._jobs[job_id], RunState.CANCELLED)
        logger.info("Job %s cancelled at %d/%d", job_id, self._jobs[job_id].progress, self._jobs[job_id].total)


def start_of_utc_day(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def recompute_status(total: int, attempted: int) -> dict:
    """Status from stored counts: total active prompts vs prompts attempted today."""
    progress = min(attempted, total)
    if progress >= total:
        status = RunState.COMPLETED
    elif progress > 0:
        status = RunState.RUNNING
    else:
        status = RunState.PENDING
    return {"status": status.value, "progress": progress, "total": total}


run_registry = RunStatusRegistry()
