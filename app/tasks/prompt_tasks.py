"""Celery tasks for scheduled and queued prompt batches.

Tasks never retry: a re-run appends new PromptRun rows, so retrying a
half-finished sweep would double-count the prompts that already ran.
"""

import asyncio
import logging
import time

from app.core.sentry import init_sentry
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

init_sentry(with_celery=True)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time to avoid conflicts with
    the module-level SQLAlchemy engine (which may be bound to a
    different loop created by uvicorn).
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_session_factory():
    """Create a fresh async engine + session factory for the task's event loop."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from app.core.config import settings

    engine = create_async_engine(
        settings.postgres_url,
        echo=False,
        pool_size=max(2, settings.max_domain_workers + 1),
        pool_pre_ping=True,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), engine


async def _run_domain_async(domain_id: str, provider: str) -> dict:
    from app.core.config import settings
    from app.core.exceptions import BatchInProgressError
    from app.services.prompt_runner import DomainRunResult, PromptRunner, summarize_results

    session_factory, engine = _make_session_factory()
    try:
        runner = PromptRunner.from_settings(settings, session_factory=session_factory)
        start = time.perf_counter()
        try:
            results = await runner.run_for_domain(domain_id, provider)
        except BatchInProgressError as e:
            logger.warning("Skipping domain %s: %s", domain_id, e, extra={"domain_id": domain_id})
            return {"skipped": True, "error": str(e)}
        summary = summarize_results(
            [DomainRunResult(domain_id=domain_id, domain="", results=results)],
            time.perf_counter() - start,
        )
        return summary.as_dict()
    finally:
        await engine.dispose()


async def _run_all_async(provider: str, workspace_id: str | None = None) -> dict:
    from app.core.config import settings
    from app.services.prompt_runner import PromptRunner, summarize_results

    session_factory, engine = _make_session_factory()
    try:
        runner = PromptRunner.from_settings(settings, session_factory=session_factory)
        start = time.perf_counter()
        domain_results = await runner.run_for_all_domains(provider, workspace_id=workspace_id)
        return summarize_results(domain_results, time.perf_counter() - start).as_dict()
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="run_domain_prompts", max_retries=0)
def run_domain_prompts_task(self, domain_id: str, provider: str = "chatgpt"):
    """Celery task: run every active prompt of one domain."""
    logger.info("Starting prompt batch for domain=%s provider=%s", domain_id, provider)
    result = _run_async(_run_domain_async(domain_id, provider))
    logger.info("Prompt batch done for domain %s: %s", domain_id, result)
    return result


@celery_app.task(bind=True, name="run_all_prompts", max_retries=0)
def run_all_prompts_task(self, provider: str = "chatgpt", workspace_id: str | None = None):
    """Celery task: sweep every domain with active prompts (beat runs this daily)."""
    logger.info("Starting prompt sweep provider=%s workspace=%s", provider, workspace_id)
    result = _run_async(_run_all_async(provider, workspace_id))
    logger.info("Prompt sweep done: %s", result)
    return result
