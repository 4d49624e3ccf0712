"""DomainReputation and the moderation read model it is derived from."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from serendip.db import Base, new_id, utcnow


class DomainReputation(Base):
    """Persisted per-domain trust signals. ``is_blacklisted`` is stored, not derived on read."""

    __tablename__ = "domain_reputation"

    domain: Mapped[str] = mapped_column(String(512), primary_key=True)
    score: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    trust_score: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    approved_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flagged_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_quality_score: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    avg_engagement_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_content: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    blacklist_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<DomainReputation {self.domain!r} score={self.score:.3f} "
            f"blacklisted={self.is_blacklisted}>"
        )


class ModerationRecord(Base):
    """Outcome of the external moderation workflow for one content item."""

    __tablename__ = "moderation_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    content_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("content.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(16), default="pending", nullable=False, comment="pending | approved | rejected"
    )
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
