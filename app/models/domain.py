import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JsonType


class Domain(Base):
    """A tracked website/brand. Owned by the user-facing app; read-only here."""

    __tablename__ = "domains"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    domain: Mapped[str] = mapped_column(String(255), nullable=False)  # e.g. "example.com"
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)  # friendly brand name
    workspace_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    competitors: Mapped[list | None] = mapped_column(JsonType, default=list)  # ["Calendly", "Acuity"]
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    prompts: Mapped[list["Prompt"]] = relationship(  # noqa: F821
        "Prompt", back_populates="domain", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.domain
