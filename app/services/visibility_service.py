"""Visibility aggregation.

Pure-function computation layer + async DB fetch layer.
All business logic is in pure functions (no DB dependency) for testability.

Windows are half-open UTC ranges: ``[start_date 00:00, end_date + 1 day 00:00)``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from app.schemas.visibility import DailyPoint, PlatformStat, RankingEntry, VisibilityStats

DAILY_SERIES_DAYS = 7
DEFAULT_WINDOW_DAYS = 7
RANKING_LIMIT = 20


# ---------------------------------------------------------------------------
# Row DTOs passed between the DB layer and the pure functions
# ---------------------------------------------------------------------------


@dataclass
class RunRow:
    """One PromptRun with its mention analysis folded in."""

    prompt_run_id: str
    provider: str
    executed_at: datetime
    succeeded: bool
    mentioned: bool = False
    position: int | None = None
    citations: int = 0


@dataclass
class BrandRow:
    prompt_run_id: str
    brand_name: str
    mentioned: bool
    position: int | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float, digits: int = 0) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent(part: int, whole: int, digits: int = 1) -> float:
    if whole <= 0:
        return 0.0
    return round_half_up(part / whole * 100, digits)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_window(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def resolve_window(start_date: date | None, end_date: date | None, today: date | None = None) -> tuple[date, date]:
    """Fill missing bounds: end defaults to today, start to a 7-day window ending at end."""
    end = end_date or today or utc_today()
    start = start_date or end - timedelta(days=DEFAULT_WINDOW_DAYS - 1)
    return start, end


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def compute_totals(rows: list[RunRow]) -> tuple[int, int, int, float]:
    """Return ``(total_queries, total_mentions, total_citations, visibility_score)``."""
    total_queries = len(rows)
    total_mentions = sum(1 for r in rows if r.mentioned)
    total_citations = sum(r.citations for r in rows)
    return total_queries, total_mentions, total_citations, percent(total_mentions, total_queries)


def compute_daily_series(rows: list[RunRow], today: date) -> list[DailyPoint]:
    """Exactly seven points, oldest first, ending at *today*. Empty days are zero."""
    days = [today - timedelta(days=offset) for offset in range(DAILY_SERIES_DAYS - 1, -1, -1)]
    mentions: dict[date, int] = defaultdict(int)
    citations: dict[date, int] = defaultdict(int)

    for row in rows:
        day = as_utc(row.executed_at).date()
        if row.mentioned:
            mentions[day] += 1
        citations[day] += row.citations

    return [DailyPoint(date=d, mentions=mentions[d], citations=citations[d]) for d in days]


def compute_platform_breakdown(rows: list[RunRow]) -> list[PlatformStat]:
    totals: dict[str, int] = defaultdict(int)
    mentions: dict[str, int] = defaultdict(int)
    for row in rows:
        totals[row.provider] += 1
        if row.mentioned:
            mentions[row.provider] += 1

    stats = [
        PlatformStat(
            name=name,
            mentions=mentions[name],
            total=total,
            percentage=int(percent(mentions[name], total, digits=0)),
        )
        for name, total in totals.items()
    ]
    stats.sort(key=lambda s: (-s.mentions, s.name))
    return stats


def _matches_brand_filter(name: str, brand_filter: list[str] | None) -> bool:
    if not brand_filter:
        return True
    lowered = name.lower()
    return any(term.strip().lower() in lowered for term in brand_filter if term.strip())


def compute_ranking(
    rows: list[RunRow],
    brand_rows: list[BrandRow],
    own_brand: str,
    competitors: list[str] | None = None,
    brand_filter: list[str] | None = None,
    limit: int = RANKING_LIMIT,
) -> list[RankingEntry]:
    """Rank the domain's own brand against tracked competitors.

    Sort: mentions desc, average position asc (no position last), name asc.
    The own brand is flagged but sorted like any other entry. Competitors
    tracked on the domain appear even with zero mentions.
    """
    total_runs = len(rows)
    window_runs = {r.prompt_run_id for r in rows}

    # key -> (display name, mention count, positions, run ids)
    brands: dict[str, tuple[str, int, list[int], set[str]]] = {}
    for name in competitors or []:
        cleaned = (name or "").strip()
        if cleaned and cleaned.lower() not in brands:
            brands[cleaned.lower()] = (cleaned, 0, [], set())

    for bm in brand_rows:
        if not bm.mentioned or bm.prompt_run_id not in window_runs:
            continue
        key = bm.brand_name.lower()
        display, count, positions, run_ids = brands.get(key, (bm.brand_name, 0, [], set()))
        if bm.position is not None:
            positions.append(bm.position)
        run_ids.add(bm.prompt_run_id)
        brands[key] = (display, count + 1, positions, run_ids)

    entries = [
        RankingEntry(
            rank=1,
            name=display,
            mentions=count,
            avg_position=round_half_up(sum(positions) / len(positions), 1) if positions else None,
            visibility=percent(len(run_ids), total_runs),
        )
        for key, (display, count, positions, run_ids) in brands.items()
        if key != own_brand.lower() and _matches_brand_filter(display, brand_filter)
    ]

    own_positions = [r.position for r in rows if r.mentioned and r.position is not None]
    own_mentions = sum(1 for r in rows if r.mentioned)
    entries.append(
        RankingEntry(
            rank=1,
            name=own_brand,
            mentions=own_mentions,
            avg_position=round_half_up(sum(own_positions) / len(own_positions), 1) if own_positions else None,
            visibility=percent(own_mentions, total_runs),
            is_user_domain=True,
        )
    )

    entries.sort(
        key=lambda e: (
            -e.mentions,
            e.avg_position is None,
            e.avg_position if e.avg_position is not None else 0.0,
            e.name.lower(),
            e.name,
        )
    )
    ranked = entries[:limit] if limit else entries
    return [e.model_copy(update={"rank": i}) for i, e in enumerate(ranked, start=1)]


def compute_visibility_stats(
    domain_id: str,
    start_date: date,
    end_date: date,
    rows: list[RunRow],
    daily_rows: list[RunRow],
    brand_rows: list[BrandRow],
    own_brand: str,
    today: date,
    competitors: list[str] | None = None,
    brand_filter: list[str] | None = None,
) -> VisibilityStats:
    rows = sorted(rows, key=lambda r: as_utc(r.executed_at))
    total_queries, total_mentions, total_citations, score = compute_totals(rows)
    return VisibilityStats(
        domain_id=domain_id,
        start_date=start_date,
        end_date=end_date,
        total_mentions=total_mentions,
        total_citations=total_citations,
        total_queries=total_queries,
        visibility_score=score,
        daily=compute_daily_series(daily_rows, today),
        platforms=compute_platform_breakdown(rows),
        ranking=compute_ranking(rows, brand_rows, own_brand, competitors, brand_filter),
    )


# ---------------------------------------------------------------------------
# Async DB layer (thin fetch + delegate to pure functions)
# ---------------------------------------------------------------------------


async def _fetch_run_rows(
    store,  # VisibilityStore
    domain_id: str,
    start: datetime,
    end: datetime,
    platforms: list[str] | None = None,
    category: str | None = None,
) -> list[RunRow]:
    fetched = await store.fetch_run_rows(domain_id, start, end, platforms=platforms, category=category)
    return [
        RunRow(
            prompt_run_id=run.id,
            provider=run.llm_provider,
            executed_at=as_utc(run.executed_at),
            succeeded=run.error is None,
            mentioned=bool(analysis and analysis.mentioned),
            position=analysis.position if analysis else None,
            citations=n_citations,
        )
        for run, analysis, n_citations in fetched
    ]


async def get_visibility_stats(
    db,  # AsyncSession
    domain_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    platforms: list[str] | None = None,
    brands: list[str] | None = None,
    category: str | None = None,
    today: date | None = None,
) -> VisibilityStats:
    """Aggregate stats for one domain over a date window. Never cached."""
    from app.core.exceptions import BadRequestError, DomainNotFoundError
    from app.services.store import VisibilityStore

    store = VisibilityStore(db)
    domain = await store.get_domain(domain_id)
    if domain is None:
        raise DomainNotFoundError(domain_id)

    today = today or utc_today()
    start_date, end_date = resolve_window(start_date, end_date, today)
    if start_date > end_date:
        raise BadRequestError("start_date must not be after end_date")

    start, end = utc_window(start_date, end_date)
    rows = await _fetch_run_rows(store, domain_id, start, end, platforms, category)

    daily_start, daily_end = utc_window(today - timedelta(days=DAILY_SERIES_DAYS - 1), today)
    daily_rows = await _fetch_run_rows(store, domain_id, daily_start, daily_end, platforms, category)

    brand_mentions = await store.fetch_brand_mentions([r.prompt_run_id for r in rows])
    brand_rows = [
        BrandRow(
            prompt_run_id=bm.prompt_run_id,
            brand_name=bm.brand_name,
            mentioned=bm.mentioned,
            position=bm.position,
        )
        for bm in brand_mentions
    ]

    return compute_visibility_stats(
        domain_id,
        start_date,
        end_date,
        rows,
        daily_rows,
        brand_rows,
        own_brand=domain.display_name,
        today=today,
        competitors=list(domain.competitors or []),
        brand_filter=brands,
    )
