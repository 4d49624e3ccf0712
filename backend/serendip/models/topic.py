"""Topic vocabulary and content/topic junction."""
from __future__ import annotations

from sqlalchemy import Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from serendip.db import Base, new_id

DEFAULT_ASSIGNMENT_CONFIDENCE = 0.8


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Topic {self.name}>"


class TopicAssignment(Base):
    __tablename__ = "content_topics"

    content_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("content.id", ondelete="CASCADE"), primary_key=True
    )
    topic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True
    )
    confidence: Mapped[float] = mapped_column(
        Float, default=DEFAULT_ASSIGNMENT_CONFIDENCE, nullable=False, comment="0..1"
    )
