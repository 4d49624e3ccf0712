"""Single write path for content topics, plus drift detection and repair.

A content item stores its topics twice: the denormalized ``content.topics``
list and the ``content_topics`` junction rows. Everything that writes topics
goes through :func:`assign_topics`; :func:`repair_topic_drift` fixes rows
written by anything else.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.metrics import TOPIC_DRIFT_REPAIRED_TOTAL
from serendip.models.content import ContentItem
from serendip.models.topic import DEFAULT_ASSIGNMENT_CONFIDENCE, Topic, TopicAssignment

logger = logging.getLogger(__name__)


@dataclass
class TopicSyncResult:
    content_id: str
    topics: list[str]
    added: int = 0
    removed: int = 0


@dataclass
class TopicDrift:
    content_id: str
    denormalized: list[str]
    assigned: list[str]


@dataclass
class RepairSummary:
    checked: int = 0
    repaired: int = 0
    failed: int = 0
    drifted_ids: list[str] = field(default_factory=list)


async def assign_topics(
    session: AsyncSession,
    content: ContentItem,
    names: Iterable[str],
    *,
    confidence: float = DEFAULT_ASSIGNMENT_CONFIDENCE,
) -> TopicSyncResult:
    """Set ``content.topics`` and its junction rows to ``names``. Unknown names are dropped.

    The caller owns the transaction; this only flushes.
    """
    wanted = list(dict.fromkeys(names))
    rows = (
        await session.execute(select(Topic.id, Topic.name).where(Topic.name.in_(wanted)))
    ).all() if wanted else []
    id_by_name = {name: topic_id for topic_id, name in rows}
    resolved = [name for name in wanted if name in id_by_name]
    if len(resolved) != len(wanted):
        logger.warning(
            "Dropping unknown topics for content %s: %s",
            content.id,
            sorted(set(wanted) - set(resolved)),
        )

    if content.id is None:
        session.add(content)
        await session.flush()

    existing = set(
        (
            await session.execute(
                select(TopicAssignment.topic_id).where(TopicAssignment.content_id == content.id)
            )
        ).scalars()
    )
    target = {id_by_name[name] for name in resolved}
    to_remove = existing - target
    to_add = target - existing

    if to_remove:
        await session.execute(
            delete(TopicAssignment).where(
                TopicAssignment.content_id == content.id,
                TopicAssignment.topic_id.in_(to_remove),
            )
        )
    for topic_id in to_add:
        session.add(TopicAssignment(content_id=content.id, topic_id=topic_id, confidence=confidence))

    content.topics = resolved
    await session.flush()

    if to_add or to_remove:
        logger.debug("Synced topics for %s: +%s -%s", content.id, len(to_add), len(to_remove))
    return TopicSyncResult(content_id=content.id, topics=resolved, added=len(to_add), removed=len(to_remove))


async def find_topic_drift(session: AsyncSession, *, limit: int | None = None) -> list[TopicDrift]:
    stmt = select(ContentItem.id, ContentItem.topics).order_by(ContentItem.created_at.desc())
    if limit:
        stmt = stmt.limit(limit)
    items = (await session.execute(stmt)).all()
    if not items:
        return []

    assigned: dict[str, set[str]] = {content_id: set() for content_id, _ in items}
    rows = await session.execute(
        select(TopicAssignment.content_id, Topic.name)
        .join(Topic, Topic.id == TopicAssignment.topic_id)
        .where(TopicAssignment.content_id.in_(list(assigned)))
    )
    for content_id, name in rows:
        assigned[content_id].add(name)

    drift: list[TopicDrift] = []
    for content_id, topics in items:
        denormalized = list(topics or [])
        if set(denormalized) != assigned[content_id]:
            drift.append(
                TopicDrift(
                    content_id=content_id,
                    denormalized=denormalized,
                    assigned=sorted(assigned[content_id]),
                )
            )
    return drift


async def repair_topic_drift(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    limit: int | None = None,
) -> RepairSummary:
    """Re-apply the denormalized list to every drifted item. The list wins."""
    summary = RepairSummary()
    async with session_factory() as session:
        drifted = await find_topic_drift(session, limit=limit)
    summary.checked = len(drifted)

    for drift in drifted:
        try:
            async with session_factory() as session:
                content = await session.get(ContentItem, drift.content_id)
                if content is None:
                    continue
                await assign_topics(session, content, drift.denormalized)
                await session.commit()
        except Exception as exc:
            summary.failed += 1
            logger.error("Topic repair failed for %s: %s", drift.content_id, exc)
            continue
        summary.repaired += 1
        summary.drifted_ids.append(drift.content_id)

    if summary.repaired:
        TOPIC_DRIFT_REPAIRED_TOTAL.inc(summary.repaired)
        logger.warning("Repaired topic drift on %s content items", summary.repaired)
    return summary
