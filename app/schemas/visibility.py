"""Pydantic response models for visibility aggregates."""

from datetime import date

from pydantic import BaseModel, Field


class DailyPoint(BaseModel):
    date: date
    mentions: int = Field(ge=0)
    citations: int = Field(ge=0)


class PlatformStat(BaseModel):
    name: str
    mentions: int = Field(ge=0)
    total: int = Field(ge=0)
    percentage: int = Field(ge=0, le=100, description="mentions / total, rounded half-up")


class RankingEntry(BaseModel):
    rank: int = Field(ge=1)
    name: str
    mentions: int = Field(ge=0)
    avg_position: float | None = None
    visibility: float = Field(ge=0, le=100, description="Share of runs mentioning the brand (%)")
    is_user_domain: bool = False


class VisibilityStats(BaseModel):
    domain_id: str
    start_date: date
    end_date: date
    total_mentions: int = Field(ge=0)
    total_citations: int = Field(ge=0)
    total_queries: int = Field(ge=0)
    visibility_score: float = Field(ge=0, le=100)
    daily: list[DailyPoint] = Field(min_length=7, max_length=7)
    platforms: list[PlatformStat]
    ranking: list[RankingEntry]
