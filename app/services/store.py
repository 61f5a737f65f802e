"""Persistence operations used by the pipeline.

Thin async wrapper around an ``AsyncSession``. Reads domains and prompts
(owned elsewhere) and appends run evidence. Nothing here updates or deletes.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.analysis.mentions import MentionResult
from app.models.brand_mention import BrandMention
from app.models.citation import Citation
from app.models.domain import Domain
from app.models.mention_analysis import MentionAnalysis
from app.models.prompt import Prompt
from app.models.prompt_run import PromptRun
from app.providers.base import ResponseMetadata, UrlCitation

logger = logging.getLogger(__name__)


class VisibilityStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_domain(self, domain_id: str) -> Domain | None:
        return await self.session.get(Domain, domain_id)

    async def get_prompt(self, prompt_id: str) -> Prompt | None:
        return await self.session.get(Prompt, prompt_id)

    async def list_active_prompts(self, domain_id: str) -> list[Prompt]:
        """Active prompts of a domain, oldest first."""
        stmt = (
            select(Prompt)
            .where(Prompt.domain_id == domain_id, Prompt.is_active.is_(True))
            .order_by(Prompt.created_at, Prompt.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_active_prompts(self, domain_id: str) -> int:
        stmt = select(func.count(Prompt.id)).where(Prompt.domain_id == domain_id, Prompt.is_active.is_(True))
        return (await self.session.execute(stmt)).scalar_one()

    async def list_domains_with_active_prompts(self, workspace_id: str | None = None) -> list[Domain]:
        stmt = (
            select(Domain)
            .where(Domain.id.in_(select(Prompt.domain_id).where(Prompt.is_active.is_(True))))
            .order_by(Domain.created_at, Domain.id)
        )
        if workspace_id:
            stmt = stmt.where(Domain.workspace_id == workspace_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_prompts_attempted_since(self, domain_id: str, since: datetime) -> int:
        """Distinct active prompts of a domain with at least one run at or after *since*."""
        stmt = (
            select(func.count(distinct(PromptRun.prompt_id)))
            .join(Prompt, PromptRun.prompt_id == Prompt.id)
            .where(
                Prompt.domain_id == domain_id,
                Prompt.is_active.is_(True),
                PromptRun.executed_at >= since,
            )
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def fetch_run_rows(
        self,
        domain_id: str,
        start: datetime,
        end: datetime,
        platforms: list[str] | None = None,
        category: str | None = None,
    ) -> list[tuple[PromptRun, MentionAnalysis | None, int]]:
        """Runs of the domain's prompts with ``start <= executed_at < end``.

        Returns ``(run, analysis, citation_count)`` ordered by executed_at.
        """
        citation_counts = (
            select(Citation.prompt_run_id, func.count(Citation.id).label("n"))
            .group_by(Citation.prompt_run_id)
            .subquery()
        )
        conditions = [
            Prompt.domain_id == domain_id,
            PromptRun.executed_at >= start,
            PromptRun.executed_at < end,
        ]
        if platforms:
            conditions.append(PromptRun.llm_provider.in_(platforms))
        if category:
            conditions.append(Prompt.category == category)

        stmt = (
            select(PromptRun, MentionAnalysis, func.coalesce(citation_counts.c.n, 0))
            .join(Prompt, PromptRun.prompt_id == Prompt.id)
            .outerjoin(MentionAnalysis, MentionAnalysis.prompt_run_id == PromptRun.id)
            .outerjoin(citation_counts, citation_counts.c.prompt_run_id == PromptRun.id)
            .where(*conditions)
            .order_by(PromptRun.executed_at, PromptRun.id)
        )
        result = await self.session.execute(stmt)
        return [(run, analysis, int(n)) for run, analysis, n in result.all()]

    async def fetch_brand_mentions(self, run_ids: list[str]) -> list[BrandMention]:
        if not run_ids:
            return []
        stmt = select(BrandMention).where(BrandMention.prompt_run_id.in_(run_ids))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    async def insert_prompt_run(
        self,
        prompt_id: str,
        provider: str,
        *,
        response_text: str | None = None,
        metadata: ResponseMetadata | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
        search_queries: list[str] | None = None,
    ) -> PromptRun:
        """Append one run record. Exactly one of *response_text* / *error* must be given."""
        if (response_text is None) == (error is None):
            raise ValueError("A prompt run needs exactly one of response_text or error")

        run = PromptRun(
            prompt_id=prompt_id,
            llm_provider=provider,
            response_text=response_text,
            response_metadata=metadata.to_dict() if metadata else None,
            duration_ms=duration_ms,
            error=error,
            search_queries=search_queries or None,
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def insert_mention_analysis(self, run: PromptRun, domain_id: str, result: MentionResult) -> MentionAnalysis:
        if run.error is not None:
            raise ValueError("Mention analysis is only recorded for successful runs")

        analysis = MentionAnalysis(
            prompt_run_id=run.id,
            domain_id=domain_id,
            mentioned=result.mentioned,
            position=result.position if result.mentioned else None,
            context_snippet=result.snippet if result.mentioned else None,
        )
        self.session.add(analysis)
        await self.session.flush()
        return analysis

    async def insert_citations(self, run: PromptRun, citations: list[UrlCitation]) -> list[Citation]:
        rows = [
            Citation(
                prompt_run_id=run.id,
                url=c.url,
                title=c.title or None,
                snippet=c.snippet,
            )
            for c in citations
        ]
        if rows:
            self.session.add_all(rows)
            await self.session.flush()
        return rows

    async def insert_brand_mentions(self, run: PromptRun, results: dict[str, MentionResult]) -> list[BrandMention]:
        rows = [
            BrandMention(
                prompt_run_id=run.id,
                brand_name=name,
                mentioned=r.mentioned,
                position=r.position if r.mentioned else None,
                context_snippet=r.snippet if r.mentioned else None,
            )
            for name, r in results.items()
        ]
        if rows:
            self.session.add_all(rows)
            await self.session.flush()
        return rows

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
