"""Read/write access for the discovery path."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from serendip.db import as_utc
from serendip.models.content import ContentItem, ContentMetrics
from serendip.models.reputation import DomainReputation
from serendip.models.topic import Topic, TopicAssignment
from serendip.models.user import DiscoveryEvent, UserInteraction, UserProfile
from serendip.scoring.discovery import (
    DEFAULT_GLOBAL_ENGAGEMENT,
    NEUTRAL,
    Candidate,
    EngagementHistory,
    InteractionHistory,
    MetricsSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_TOPICS = ["technology", "science"]
POSITIVE_ACTIONS = {"like": 1, "save": 2}
NEGATIVE_ACTIONS = {"skip", "dislike"}
HISTORY_LIMIT = 100


@dataclass
class UserPreferences:
    user_id: str
    topics: list[str]
    blocked_domains: list[str] = field(default_factory=list)
    engagement: EngagementHistory | None = None
    known: bool = True


class DiscoveryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def user_preferences(self, user_id: str) -> UserPreferences:
        profile = await self.session.get(UserProfile, user_id)
        if profile is None:
            return UserPreferences(user_id=user_id, topics=list(DEFAULT_USER_TOPICS), known=False)

        engagement = None
        if any(rate is not None for rate in (profile.like_rate, profile.save_rate, profile.skip_rate)):
            engagement = EngagementHistory(
                like_rate=profile.like_rate or 0.0,
                save_rate=profile.save_rate or 0.0,
                skip_rate=profile.skip_rate or 0.0,
            )
        return UserPreferences(
            user_id=user_id,
            topics=list(profile.preferred_topics or DEFAULT_USER_TOPICS),
            blocked_domains=list(profile.blocked_domains or []),
            engagement=engagement,
        )

    async def active_candidates(
        self,
        limit: int,
        *,
        exclude_ids: Iterable[str] = (),
        blocked_domains: Iterable[str] = (),
    ) -> list[Candidate]:
        """Active content outside blacklisted domains, newest first.

        ``exclude_ids`` and ``blocked_domains`` are applied in the query, before
        the limit, so older eligible items are still reachable.
        """
        blacklisted = select(DomainReputation.domain).where(DomainReputation.is_blacklisted.is_(True))
        stmt = (
            select(ContentItem, ContentMetrics)
            .outerjoin(ContentMetrics, ContentMetrics.content_id == ContentItem.id)
            .where(ContentItem.is_active.is_(True))
            .where(ContentItem.domain.not_in(blacklisted))
        )
        excluded = set(exclude_ids)
        if excluded:
            stmt = stmt.where(ContentItem.id.not_in(excluded))
        blocked = set(blocked_domains)
        if blocked:
            stmt = stmt.where(ContentItem.domain.not_in(blocked))
        stmt = stmt.order_by(ContentItem.created_at.desc()).limit(limit)
        rows = (await self.session.execute(stmt)).all()
        if not rows:
            return []

        confidences = await self._topic_confidences([content.id for content, _ in rows])
        candidates = []
        for content, metrics in rows:
            known = confidences.get(content.id, {})
            topics = [(name, known.get(name)) for name in (content.topics or [])]
            candidates.append(
                Candidate(
                    id=content.id,
                    url=content.url,
                    title=content.title,
                    domain=content.domain,
                    topics=topics,
                    created_at=as_utc(content.created_at),
                    description=content.description,
                    image_url=content.image_url,
                    base_score=content.base_score,
                    quality_score=content.quality_score,
                    popularity_score=content.popularity_score,
                    metrics=_snapshot(metrics),
                )
            )
        return candidates

    async def _topic_confidences(self, content_ids: list[str]) -> dict[str, dict[str, float]]:
        stmt = (
            select(TopicAssignment.content_id, Topic.name, TopicAssignment.confidence)
            .join(Topic, Topic.id == TopicAssignment.topic_id)
            .where(TopicAssignment.content_id.in_(content_ids))
        )
        out: dict[str, dict[str, float]] = defaultdict(dict)
        for content_id, name, confidence in (await self.session.execute(stmt)).all():
            out[content_id][name] = confidence
        return out

    async def global_engagement_average(self) -> float:
        avg = (
            await self.session.execute(
                select(func.avg(ContentMetrics.engagement_rate)).where(
                    ContentMetrics.engagement_rate.is_not(None)
                )
            )
        ).scalar_one_or_none()
        if avg is None:
            return DEFAULT_GLOBAL_ENGAGEMENT
        return max(0.1, float(avg))

    async def interaction_history(self, user_id: str, limit: int = HISTORY_LIMIT) -> InteractionHistory:
        stmt = (
            select(UserInteraction.action, ContentItem.topics, ContentItem.domain)
            .join(ContentItem, ContentItem.id == UserInteraction.content_id)
            .where(UserInteraction.user_id == user_id)
            .order_by(UserInteraction.created_at.desc())
            .limit(limit)
        )
        history = InteractionHistory()
        for action, topics, domain in (await self.session.execute(stmt)).all():
            if action in POSITIVE_ACTIONS:
                weight = POSITIVE_ACTIONS[action]
                for topic in topics or []:
                    history.liked_topics[topic] = history.liked_topics.get(topic, 0) + weight
                if domain:
                    history.liked_domains[domain] = history.liked_domains.get(domain, 0) + 1
            elif action in NEGATIVE_ACTIONS:
                for topic in topics or []:
                    history.disliked_topics[topic] = history.disliked_topics.get(topic, 0) + 1
        return history

    async def domain_reputations(self, domains: set[str]) -> dict[str, float]:
        reputations = {domain: NEUTRAL for domain in domains}
        if not domains:
            return reputations
        stmt = select(DomainReputation.domain, DomainReputation.score).where(
            DomainReputation.domain.in_(domains)
        )
        for domain, score in (await self.session.execute(stmt)).all():
            reputations[domain] = max(0.0, min(1.0, score))
        return reputations

    async def record_discovery_event(
        self,
        *,
        user_id: str,
        content_id: str,
        wildness: int,
        base_score: float,
        final_score: float,
        rank: int,
        algorithm_version: str,
    ) -> None:
        self.session.add(
            DiscoveryEvent(
                user_id=user_id,
                content_id=content_id,
                wildness=wildness,
                base_score=base_score,
                final_score=final_score,
                rank=rank,
                algorithm_version=algorithm_version,
            )
        )
        await self.session.commit()


def _snapshot(metrics: ContentMetrics | None) -> MetricsSnapshot | None:
    if metrics is None:
        return None
    return MetricsSnapshot(
        views_count=metrics.views_count,
        likes_count=metrics.likes_count,
        saves_count=metrics.saves_count,
        shares_count=metrics.shares_count,
        skip_count=metrics.skip_count,
        engagement_rate=metrics.engagement_rate,
    )
