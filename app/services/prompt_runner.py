"""Run Orchestrator: execute a domain's active prompts and record the evidence.

For each prompt, strictly one after another:
  1. call the provider,
  2. append a PromptRun (response or error),
  3. on success run the mention extractor for the domain and each tracked
     competitor, append MentionAnalysis / BrandMention / Citation rows,
  4. commit, report progress, sleep the courtesy delay.

A failure on one prompt is captured into its RunResult and never aborts the
batch. Sweeps over many domains skip a failing domain and carry on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.analysis.mentions import analyze_brand_mentions, analyze_mentions
from app.core.config import Settings
from app.core.exceptions import BatchInProgressError, DomainNotFoundError, PromptNotFoundError
from app.core.metrics import BATCHES, PROMPT_RUNS, PROVIDER_LATENCY
from app.providers.base import ProviderError, ProviderName
from app.providers.registry import ProviderClient, parse_provider
from app.services.batch_lock import DomainBatchLocks, default_holder
from app.services.citations import enrich_citations
from app.services.run_status import BatchJob, RunStatusRegistry
from app.services.store import VisibilityStore

logger = logging.getLogger(__name__)

RESPONSE_PREVIEW_CHARS = 200

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RunResult:
    """Outcome of one prompt attempt."""

    prompt_id: str
    provider: str
    success: bool
    prompt_run_id: str | None = None
    error: str | None = None
    mentioned: bool | None = None
    response_preview: str | None = None


@dataclass
class DomainRunResult:
    domain_id: str
    domain: str
    results: list[RunResult] = field(default_factory=list)
    error: str | None = None


@dataclass
class RunSummary:
    domains: int
    total_prompts: int
    successful: int
    failed: int
    mentions: int
    failed_domains: int
    duration_seconds: float

    def as_dict(self) -> dict:
        return {
            "domains": self.domains,
            "total_prompts": self.total_prompts,
            "successful": self.successful,
            "failed": self.failed,
            "mentions": self.mentions,
            "failed_domains": self.failed_domains,
            "duration_seconds": self.duration_seconds,
        }


def summarize_results(domain_results: list[DomainRunResult], duration_seconds: float = 0.0) -> RunSummary:
    results = [r for d in domain_results for r in d.results]
    return RunSummary(
        domains=len(domain_results),
        total_prompts=len(results),
        successful=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
        mentions=sum(1 for r in results if r.mentioned),
        failed_domains=sum(1 for d in domain_results if d.error),
        duration_seconds=round(duration_seconds, 2),
    )


# ---------------------------------------------------------------------------
# RPM-aware rate limiter (token bucket)
# ---------------------------------------------------------------------------


class RpmLimiter:
    """Token-bucket limiter shared by parallel domain workers.

    Allows bursts up to *burst* tokens, refills at *rpm* tokens per minute.
    Each ``acquire()`` consumes one token, sleeping when the bucket is empty.
    """

    def __init__(self, rpm: int, burst: int | None = None):
        self.rpm = rpm
        self.burst = burst or max(rpm // 4, 1)
        self._tokens = float(self.burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._tokens = min(self.burst, self._tokens + (now - self._last_refill) * (self.rpm / 60.0))
            self._last_refill = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return

            wait = (1.0 - self._tokens) / (self.rpm / 60.0)
            # Reserve the token now so concurrent waiters queue behind us
            self._tokens -= 1.0

        logger.debug("RpmLimiter: waiting %.2fs (rpm=%d)", wait, self.rpm)
        await asyncio.sleep(wait)


class PromptRunner:
    """Executes prompt batches for one domain, one workspace, or every domain."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: ProviderClient,
        *,
        prompt_delay: float = 0.5,
        domain_delay: float = 1.0,
        max_domain_workers: int = 1,
        provider_rpm: int = 0,
        enrich_citations: bool = False,
        citation_timeout: float = 5.0,
        batch_lock_ttl: float = 900.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.client = client
        self.prompt_delay = prompt_delay
        self.domain_delay = domain_delay
        self.max_domain_workers = max(1, max_domain_workers)
        self.limiter = RpmLimiter(provider_rpm) if provider_rpm > 0 else None
        self.enrich_citations = enrich_citations
        self.citation_timeout = citation_timeout
        self.locks = DomainBatchLocks(session_factory, ttl_seconds=batch_lock_ttl)
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        client: ProviderClient | None = None,
    ) -> PromptRunner:
        if session_factory is None:
            from app.db.postgres import async_session_factory

            session_factory = async_session_factory
        return cls(
            session_factory,
            client or ProviderClient.from_settings(settings),
            prompt_delay=settings.prompt_delay_seconds,
            domain_delay=settings.domain_delay_seconds,
            max_domain_workers=settings.max_domain_workers,
            provider_rpm=settings.provider_rpm,
            enrich_citations=settings.enrich_citations,
            citation_timeout=settings.citation_fetch_timeout,
            batch_lock_ttl=settings.batch_lock_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Single prompt
    # ------------------------------------------------------------------

    async def _execute_prompt(
        self,
        store: VisibilityStore,
        *,
        prompt_id: str,
        prompt_text: str,
        domain_id: str,
        domain_name: str,
        competitors: list[str],
        provider: str,
    ) -> RunResult:
        try:
            if self.limiter is not None:
                await self.limiter.acquire()

            outcome = await self.client.execute(prompt_text, provider)

            if isinstance(outcome, ProviderError):
                run = await store.insert_prompt_run(prompt_id, provider, error=outcome.error)
                await store.commit()
                PROMPT_RUNS.labels(provider=provider, outcome="failure").inc()
                logger.warning("Prompt %s failed on %s: %s", prompt_id, provider, outcome.error)
                return RunResult(
                    prompt_id=prompt_id,
                    prompt_run_id=run.id,
                    provider=provider,
                    success=False,
                    error=outcome.error,
                )

            PROVIDER_LATENCY.labels(provider=provider).observe(outcome.duration_ms / 1000)

            citations = outcome.citations
            if self.enrich_citations and citations:
                citations = await enrich_citations(citations, timeout=self.citation_timeout)

            run = await store.insert_prompt_run(
                prompt_id,
                provider,
                response_text=outcome.text,
                metadata=outcome.metadata,
                duration_ms=outcome.duration_ms,
                search_queries=outcome.search_queries,
            )
            await store.insert_citations(run, citations)

            mention = analyze_mentions(outcome.text, domain_name)
            await store.insert_mention_analysis(run, domain_id, mention)
            if competitors:
                await store.insert_brand_mentions(run, analyze_brand_mentions(outcome.text, competitors))
            await store.commit()

            PROMPT_RUNS.labels(provider=provider, outcome="success").inc()
            logger.debug(
                "Prompt %s on %s: mentioned=%s position=%s (%dms)",
                prompt_id,
                provider,
                mention.mentioned,
                mention.position,
                outcome.duration_ms,
            )
            return RunResult(
                prompt_id=prompt_id,
                prompt_run_id=run.id,
                provider=provider,
                success=True,
                mentioned=mention.mentioned,
                response_preview=outcome.text[:RESPONSE_PREVIEW_CHARS],
            )
        except Exception as e:
            logger.exception("Unexpected error running prompt %s on %s", prompt_id, provider)
            await store.rollback()
            PROMPT_RUNS.labels(provider=provider, outcome="failure").inc()
            return RunResult(prompt_id=prompt_id, provider=provider, success=False, error=str(e) or type(e).__name__)

    async def run_single_prompt(self, prompt_id: str, provider: str | ProviderName) -> RunResult:
        provider_name = _provider_label(provider)
        async with self.session_factory() as session:
            store = VisibilityStore(session)
            prompt = await store.get_prompt(prompt_id)
            if prompt is None:
                raise PromptNotFoundError(prompt_id)
            domain = await store.get_domain(prompt.domain_id)
            if domain is None:
                raise DomainNotFoundError(prompt.domain_id)

            return await self._execute_prompt(
                store,
                prompt_id=prompt.id,
                prompt_text=prompt.prompt_text,
                domain_id=domain.id,
                domain_name=domain.domain,
                competitors=list(domain.competitors or []),
                provider=provider_name,
            )

    # ------------------------------------------------------------------
    # Domain batch
    # ------------------------------------------------------------------

    async def run_for_domain(
        self,
        domain_id: str,
        provider: str | ProviderName,
        *,
        cancel: asyncio.Event | None = None,
        on_start: Callable[[int], None] | None = None,
        on_progress: Callable[[], None] | None = None,
        holder: str | None = None,
    ) -> list[RunResult]:
        """Run every active prompt of a domain, sequentially.

        Holds the domain's batch lock for the whole run. Raises
        BatchInProgressError when another batch holds it, and
        DomainNotFoundError when the domain does not exist. Every other
        failure is recorded per prompt.
        """
        provider_name = _provider_label(provider)
        holder = holder or default_holder()
        log_extra = {"job_id": holder, "domain_id": domain_id}

        async with self.locks.hold(domain_id, holder), self.session_factory() as session:
            store = VisibilityStore(session)
            domain = await store.get_domain(domain_id)
            if domain is None:
                raise DomainNotFoundError(domain_id)

            domain_name = domain.domain
            competitors = list(domain.competitors or [])
            # Plain values: a rollback after a failed prompt expires ORM instances
            prompts = [(p.id, p.prompt_text) for p in await store.list_active_prompts(domain_id)]

            logger.info(
                "Running %d prompts for %s on %s", len(prompts), domain_name, provider_name, extra=log_extra
            )
            if on_start is not None:
                on_start(len(prompts))

            results: list[RunResult] = []
            for prompt_id, prompt_text in prompts:
                if cancel is not None and cancel.is_set():
                    logger.info(
                        "Batch for %s cancelled after %d/%d prompts",
                        domain_name,
                        len(results),
                        len(prompts),
                        extra=log_extra,
                    )
                    break

                result = await self._execute_prompt(
                    store,
                    prompt_id=prompt_id,
                    prompt_text=prompt_text,
                    domain_id=domain_id,
                    domain_name=domain_name,
                    competitors=competitors,
                    provider=provider_name,
                )
                results.append(result)
                if on_progress is not None:
                    on_progress()

                await self.locks.refresh(domain_id, holder)
                await self._sleep(self.prompt_delay)

        ok = sum(1 for r in results if r.success)
        logger.info(
            "Domain %s done: %d/%d succeeded, %d mentioned",
            domain_name,
            ok,
            len(results),
            sum(1 for r in results if r.mentioned),
            extra=log_extra,
        )
        return results

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def run_for_all_domains(
        self,
        provider: str | ProviderName,
        *,
        workspace_id: str | None = None,
        cancel: asyncio.Event | None = None,
        on_start: Callable[[int], None] | None = None,
        on_progress: Callable[[], None] | None = None,
    ) -> list[DomainRunResult]:
        """Run every domain that has at least one active prompt.

        With ``max_domain_workers == 1`` domains run one after another with
        ``domain_delay`` between them. Larger values run that many domains at
        once; prompts inside a domain always stay sequential.
        """
        async with self.session_factory() as session:
            domains = await VisibilityStore(session).list_domains_with_active_prompts(workspace_id)
            targets = [(d.id, d.domain) for d in domains]

        logger.info(
            "Sweep starting: %d domains (workspace=%s, workers=%d)",
            len(targets),
            workspace_id,
            self.max_domain_workers,
        )
        semaphore = asyncio.Semaphore(self.max_domain_workers)

        async def _run_one(index: int, domain_id: str, domain_name: str) -> DomainRunResult:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return DomainRunResult(domain_id=domain_id, domain=domain_name, error="cancelled")
                try:
                    results = await self.run_for_domain(
                        domain_id,
                        provider,
                        cancel=cancel,
                        on_start=on_start,
                        on_progress=on_progress,
                    )
                    outcome = DomainRunResult(domain_id=domain_id, domain=domain_name, results=results)
                except BatchInProgressError as e:
                    logger.warning("Domain %s skipped: %s", domain_name, e, extra={"domain_id": domain_id})
                    outcome = DomainRunResult(domain_id=domain_id, domain=domain_name, error=str(e))
                except Exception as e:
                    logger.exception("Domain %s (%s) failed, skipping", domain_name, domain_id)
                    outcome = DomainRunResult(domain_id=domain_id, domain=domain_name, error=str(e))

                if index < len(targets) - 1:
                    await self._sleep(self.domain_delay)
                return outcome

        outcomes = await asyncio.gather(*(_run_one(i, d_id, name) for i, (d_id, name) in enumerate(targets)))
        return list(outcomes)

    async def run_for_workspace(
        self,
        workspace_id: str,
        provider: str | ProviderName,
        **kwargs,
    ) -> list[DomainRunResult]:
        return await self.run_for_all_domains(provider, workspace_id=workspace_id, **kwargs)


def _provider_label(provider: str | ProviderName) -> str:
    name = parse_provider(provider)
    return name.value if name is not None else str(provider)


# ---------------------------------------------------------------------------
# In-process batch worker
# ---------------------------------------------------------------------------


class BatchWorker:
    """Single asyncio consumer for jobs submitted through the HTTP API."""

    def __init__(self, runner_factory: Callable[[], PromptRunner], registry: RunStatusRegistry):
        self.runner_factory = runner_factory
        self.registry = registry
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name="batch-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def submit(
        self,
        provider: str,
        domain_id: str | None = None,
        workspace_id: str | None = None,
        total: int = 0,
    ) -> BatchJob:
        """Register a job and queue it. Raises BatchInProgressError on overlap."""
        job = self.registry.submit(provider, domain_id=domain_id, workspace_id=workspace_id, total=total)
        self._queue.put_nowait(job.job_id)
        return job

    async def join(self) -> None:
        await self._queue.join()

    async def _loop(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.process(job_id)
            finally:
                self._queue.task_done()

    async def process(self, job_id: str) -> None:
        job = self.registry.get(job_id)
        if job is None or not job.is_active:
            return

        log_extra = {"job_id": job_id, "domain_id": job.domain_id}
        runner = self.runner_factory()
        try:
            if job.domain_id is not None:
                await runner.run_for_domain(
                    job.domain_id,
                    job.provider,
                    cancel=job.cancel_event,
                    on_start=lambda total: self.registry.start(job_id, total),
                    on_progress=lambda: self.registry.advance(job_id),
                    holder=job_id,
                )
            else:
                await runner.run_for_all_domains(
                    job.provider,
                    workspace_id=job.workspace_id,
                    cancel=job.cancel_event,
                    on_start=lambda total: self.registry.grow_total(job_id, total),
                    on_progress=lambda: self.registry.advance(job_id),
                )
        except BatchInProgressError as e:
            logger.warning("Job %s not run: %s", job_id, e, extra=log_extra)
            self.registry.complete(job_id, error=str(e))
            BATCHES.labels(state="failed").inc()
            return
        except Exception as e:
            logger.exception("Job %s failed", job_id, extra=log_extra)
            self.registry.complete(job_id, error=str(e))
            BATCHES.labels(state="failed").inc()
            return

        if job.cancel_event.is_set():
            self.registry.mark_cancelled(job_id)
        else:
            self.registry.complete(job_id)
        logger.info("Job %s finished: %s %d/%d", job_id, job.status.value, job.progress, job.total, extra=log_extra)
        BATCHES.labels(state=job.status.value).inc()
