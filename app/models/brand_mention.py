import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class BrandMention(Base):
    """Mention evidence for one tracked competitor brand in one successful prompt run."""

    __tablename__ = "brand_mentions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    prompt_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("prompt_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    brand_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mentioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    context_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    prompt_run: Mapped["PromptRun"] = relationship("PromptRun", back_populates="brand_mentions")  # noqa: F821
