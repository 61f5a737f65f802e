"""Visibility API endpoint: aggregated mention statistics for a domain."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.postgres import get_db
from app.schemas.visibility import VisibilityStats
from app.services.visibility_service import get_visibility_stats

router = APIRouter(tags=["visibility"])


def _split_csv(value: str | None) -> list[str] | None:
    if not value:
        return None
    items = [v.strip() for v in value.split(",") if v.strip()]
    return items or None


@router.get("/domains/{domain_id}/visibility", response_model=VisibilityStats)
async def domain_visibility(
    domain_id: str,
    start_date: date | None = Query(None, description="Inclusive, UTC (YYYY-MM-DD)"),
    end_date: date | None = Query(None, description="Inclusive, UTC (YYYY-MM-DD)"),
    platforms: str | None = Query(None, description="Comma-separated provider names"),
    brands: str | None = Query(None, description="Comma-separated brand filter for the ranking"),
    category: str | None = Query(None, description="Prompt category"),
    db: AsyncSession = Depends(get_db),
):
    """Mentions, citations, platform breakdown, ranking and a 7-day series."""
    return await get_visibility_stats(
        db,
        domain_id,
        start_date=start_date,
        end_date=end_date,
        platforms=_split_csv(platforms),
        brands=_split_csv(brands),
        category=category,
    )
