import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JsonType


class PromptRun(Base):
    """One execution of one prompt against one provider. Append-only."""

    __tablename__ = "prompt_runs"
    __table_args__ = (
        # A run is either a success record or a failure record
        CheckConstraint(
            "(response_text IS NULL) <> (error IS NULL)",
            name="ck_prompt_run_outcome",
        ),
        Index("ix_prompt_runs_prompt_executed", "prompt_id", "executed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    prompt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    llm_provider: Mapped[str] = mapped_column(String(20), nullable=False)  # chatgpt | claude | perplexity | ...
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_metadata: Mapped[dict | None] = mapped_column(
        JsonType, nullable=True
    )  # {"model": ..., "tokens_used": ..., "finish_reason": ...}
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    search_queries: Mapped[list | None] = mapped_column(JsonType, nullable=True)  # web search tool queries
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    # Relationships
    prompt: Mapped["Prompt"] = relationship("Prompt", back_populates="runs")  # noqa: F821
    mention_analysis: Mapped["MentionAnalysis"] = relationship(  # noqa: F821
        "MentionAnalysis", back_populates="prompt_run", uselist=False, cascade="all, delete-orphan"
    )
    citations: Mapped[list["Citation"]] = relationship(  # noqa: F821
        "Citation", back_populates="prompt_run", cascade="all, delete-orphan"
    )
    brand_mentions: Mapped[list["BrandMention"]] = relationship(  # noqa: F821
        "BrandMention", back_populates="prompt_run", cascade="all, delete-orphan"
    )

    @property
    def succeeded(self) -> bool:
        return self.error is None
