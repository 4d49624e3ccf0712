"""Source model: one configured feed, sitemap or website to crawl."""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from serendip.db import Base, JSONType, new_id, utcnow


class SourceType(str, enum.Enum):
    FEED = "feed"
    SITEMAP = "sitemap"
    SITE = "site"


class Source(Base):
    """External source polled by the acquisition engine."""

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="feed | sitemap | site"
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    domain: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    crawl_frequency_hours: Mapped[int] = mapped_column(
        Integer, default=24, nullable=False, comment="1..168"
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    topics: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    extract_links: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_crawled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_crawl_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Source id={self.id} type={self.type} domain={self.domain!r}>"
