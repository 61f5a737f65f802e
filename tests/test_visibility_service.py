"""Tests for visibility aggregation: pure functions and the store-backed entry point."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import BadRequestError, DomainNotFoundError
from app.services.store import VisibilityStore
from app.services.visibility_service import (
    BrandRow,
    RunRow,
    compute_daily_series,
    compute_platform_breakdown,
    compute_ranking,
    compute_totals,
    get_visibility_stats,
    resolve_window,
    round_half_up,
    utc_window,
)

TODAY = date(2026, 3, 10)


def _at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


def _row(i: int, provider: str = "chatgpt", mentioned: bool = False, day: date = TODAY, **kwargs) -> RunRow:
    return RunRow(
        prompt_run_id=f"r{i}",
        provider=provider,
        executed_at=_at(day),
        succeeded=True,
        mentioned=mentioned,
        **kwargs,
    )


class TestHelpers:
    def test_round_half_up(self):
        assert round_half_up(12.5) == 13
        assert round_half_up(2.5) == 3
        assert round_half_up(33.35, 1) == 33.4

    def test_utc_window_is_half_open_days(self):
        start, end = utc_window(date(2026, 3, 1), date(2026, 3, 1))
        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 2, tzinfo=timezone.utc)

    def test_resolve_window_defaults(self):
        assert resolve_window(None, None, TODAY) == (date(2026, 3, 4), TODAY)
        assert resolve_window(date(2026, 1, 1), None, TODAY) == (date(2026, 1, 1), TODAY)


class TestTotals:
    def test_empty(self):
        assert compute_totals([]) == (0, 0, 0, 0.0)

    def test_score_rounded_to_one_decimal(self):
        rows = [_row(1, mentioned=True), _row(2), _row(3)]
        total, mentions, citations, score = compute_totals(rows)
        assert (total, mentions, citations) == (3, 1, 0)
        assert score == 33.3

    def test_failed_runs_count_as_queries(self):
        rows = [_row(1, mentioned=True), RunRow("r2", "chatgpt", _at(TODAY), succeeded=False)]
        assert compute_totals(rows)[3] == 50.0

    def test_citations_summed(self):
        rows = [_row(1, citations=2), _row(2, citations=3)]
        assert compute_totals(rows)[2] == 5


class TestDailySeries:
    def test_seven_zero_entries_without_data(self):
        series = compute_daily_series([], TODAY)
        assert len(series) == 7
        assert [p.date for p in series] == [TODAY - timedelta(days=d) for d in range(6, -1, -1)]
        assert all(p.mentions == 0 and p.citations == 0 for p in series)

    def test_buckets_by_utc_day(self):
        rows = [
            _row(1, mentioned=True, day=TODAY, citations=1),
            _row(2, mentioned=True, day=TODAY - timedelta(days=2)),
            _row(3, mentioned=False, day=TODAY - timedelta(days=2), citations=4),
        ]
        series = {p.date: p for p in compute_daily_series(rows, TODAY)}
        assert series[TODAY].mentions == 1
        assert series[TODAY].citations == 1
        assert series[TODAY - timedelta(days=2)].mentions == 1
        assert series[TODAY - timedelta(days=2)].citations == 4
        assert series[TODAY - timedelta(days=1)].mentions == 0

    def test_rows_outside_range_ignored(self):
        rows = [_row(1, mentioned=True, day=TODAY - timedelta(days=30))]
        assert sum(p.mentions for p in compute_daily_series(rows, TODAY)) == 0

    def test_naive_timestamps_treated_as_utc(self):
        row = RunRow("r1", "chatgpt", datetime(2026, 3, 9, 23, 30), succeeded=True, mentioned=True)
        series = {p.date: p for p in compute_daily_series([row], TODAY)}
        assert series[date(2026, 3, 9)].mentions == 1


class TestPlatformBreakdown:
    def test_percentages_and_order(self):
        rows = [
            _row(1, "perplexity", mentioned=True),
            _row(2, "perplexity"),
            _row(3, "chatgpt", mentioned=True),
            _row(4, "chatgpt", mentioned=True),
            _row(5, "chatgpt"),
            _row(6, "gemini"),
        ]
        stats = compute_platform_breakdown(rows)
        assert [(s.name, s.mentions, s.total, s.percentage) for s in stats] == [
            ("chatgpt", 2, 3, 67),
            ("perplexity", 1, 2, 50),
            ("gemini", 0, 1, 0),
        ]

    def test_tie_broken_by_name(self):
        rows = [_row(1, "perplexity", mentioned=True), _row(2, "chatgpt", mentioned=True)]
        assert [s.name for s in compute_platform_breakdown(rows)] == ["chatgpt", "perplexity"]

    def test_half_rounds_up(self):
        rows = [_row(i, "chatgpt", mentioned=i == 0) for i in range(8)]
        assert compute_platform_breakdown(rows)[0].percentage == 13


class TestRanking:
    def test_own_brand_participates_in_sort(self):
        rows = [_row(1, mentioned=True, position=2), _row(2), _row(3)]
        brand_rows = [
            BrandRow("r1", "Calendly", True, 1),
            BrandRow("r2", "Calendly", True, 3),
        ]
        ranking = compute_ranking(rows, brand_rows, "Acme", competitors=["Calendly", "Doodle"])

        assert [(e.rank, e.name, e.mentions) for e in ranking] == [
            (1, "Calendly", 2),
            (2, "Acme", 1),
            (3, "Doodle", 0),
        ]
        acme = ranking[1]
        assert acme.is_user_domain is True
        assert acme.avg_position == 2.0
        assert acme.visibility == 33.3
        assert ranking[0].avg_position == 2.0
        assert ranking[0].visibility == 66.7
        assert ranking[2].avg_position is None

    def test_tie_broken_by_position_then_name(self):
        rows = [_row(1), _row(2)]
        brand_rows = [
            BrandRow("r1", "Zeta", True, 1),
            BrandRow("r1", "Beta", True, 4),
            BrandRow("r2", "Alpha", True, 4),
            BrandRow("r2", "Nopos", True, None),
        ]
        ranking = compute_ranking(rows, brand_rows, "Acme")
        assert [e.name for e in ranking] == ["Zeta", "Alpha", "Beta", "Nopos", "Acme"]

    def test_brand_filter_keeps_own_brand(self):
        rows = [_row(1, mentioned=True)]
        brand_rows = [BrandRow("r1", "Calendly", True, 1), BrandRow("r1", "Acuity", True, 2)]
        ranking = compute_ranking(rows, brand_rows, "Acme", brand_filter=["CAL"])
        assert {e.name for e in ranking} == {"Calendly", "Acme"}

    def test_unmentioned_and_out_of_window_rows_ignored(self):
        rows = [_row(1)]
        brand_rows = [BrandRow("r1", "Calendly", False, None), BrandRow("r99", "Calendly", True, 1)]
        ranking = compute_ranking(rows, brand_rows, "Acme", competitors=["Calendly"])
        calendly = next(e for e in ranking if e.name == "Calendly")
        assert calendly.mentions == 0

    def test_empty(self):
        ranking = compute_ranking([], [], "Acme")
        assert len(ranking) == 1
        assert ranking[0].visibility == 0.0


class TestGetVisibilityStats:
    async def test_zero_data_window(self, db, seed_domain):
        domain = await seed_domain()
        stats = await get_visibility_stats(db, domain.id, date(2025, 1, 1), date(2025, 1, 31), today=TODAY)
        assert stats.total_queries == 0
        assert stats.visibility_score == 0.0
        assert len(stats.daily) == 7
        assert all(p.mentions == 0 and p.citations == 0 for p in stats.daily)
        assert stats.platforms == []

    async def test_window_and_filters(self, db, seed_domain, add_run):
        domain = await seed_domain(prompts=["a", "b"], competitors=["Calendly"], name="Acme")
        prompts = await VisibilityStore(db).list_active_prompts(domain.id)

        await add_run(prompts[0], _at(TODAY), mentioned=True, position=1, citations=2, brands={"Calendly": 3})
        await add_run(prompts[1], _at(TODAY - timedelta(days=1)), mentioned=False)
        await add_run(prompts[0], _at(TODAY - timedelta(days=1)), provider="perplexity", mentioned=True, position=2)
        await add_run(prompts[1], _at(TODAY), error="timeout")
        # end of window boundary: next day 00:00 is excluded
        await add_run(prompts[0], datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc), mentioned=True)
        # outside window
        await add_run(prompts[0], _at(TODAY - timedelta(days=20)), mentioned=True)

        stats = await get_visibility_stats(db, domain.id, TODAY - timedelta(days=3), TODAY, today=TODAY)
        assert stats.total_queries == 4
        assert stats.total_mentions == 2
        assert stats.total_citations == 2
        assert stats.visibility_score == 50.0
        assert [(p.name, p.mentions, p.total, p.percentage) for p in stats.platforms] == [
            ("chatgpt", 1, 3, 33),
            ("perplexity", 1, 1, 100),
        ]
        assert stats.daily[-1].date == TODAY
        assert stats.daily[-1].mentions == 1
        assert stats.daily[-1].citations == 2
        assert stats.daily[-2].mentions == 1

        names = [(e.name, e.is_user_domain) for e in stats.ranking]
        assert names == [("Acme", True), ("Calendly", False)]

        only_chatgpt = await get_visibility_stats(
            db, domain.id, TODAY - timedelta(days=3), TODAY, platforms=["chatgpt"], today=TODAY
        )
        assert only_chatgpt.total_queries == 3
        assert only_chatgpt.daily[-2].mentions == 0

    async def test_category_filter(self, db, seed_domain, add_run):
        domain = await seed_domain(prompts=["a"], category="brand")
        prompts = await VisibilityStore(db).list_active_prompts(domain.id)
        await add_run(prompts[0], _at(TODAY), mentioned=True)

        assert (await get_visibility_stats(db, domain.id, TODAY, TODAY, category="brand", today=TODAY)).total_queries == 1
        assert (
            await get_visibility_stats(db, domain.id, TODAY, TODAY, category="comparison", today=TODAY)
        ).total_queries == 0

    async def test_unknown_domain(self, db):
        with pytest.raises(DomainNotFoundError):
            await get_visibility_stats(db, "missing", today=TODAY)

    async def test_inverted_window(self, db, seed_domain):
        domain = await seed_domain()
        with pytest.raises(BadRequestError):
            await get_visibility_stats(db, domain.id, TODAY, TODAY - timedelta(days=1), today=TODAY)
