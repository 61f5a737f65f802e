import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class MentionAnalysis(Base):
    """Mention evidence for the tracked domain in one successful prompt run."""

    __tablename__ = "mention_analyses"
    __table_args__ = (
        CheckConstraint(
            "mentioned OR (position IS NULL AND context_snippet IS NULL)",
            name="ck_mention_analysis_unmentioned_empty",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    prompt_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("prompt_runs.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    domain_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("domains.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mentioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)  # sentence-segment rank, 1+
    context_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    prompt_run: Mapped["PromptRun"] = relationship("PromptRun", back_populates="mention_analysis")  # noqa: F821
