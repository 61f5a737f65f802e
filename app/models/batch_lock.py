from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class DomainBatchLock(Base):
    """A domain whose prompt batch is being run. One row per domain, shared by every process."""

    __tablename__ = "domain_batch_locks"

    domain_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    holder: Mapped[str] = mapped_column(String(100), nullable=False)  # job id, or host:pid for CLI / Celery
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
