"""Domain reputation: trust and reputation scores with decay and blacklist rules."""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.config import settings
from serendip.db import as_utc, utcnow
from serendip.errors import ReputationComputeFailure
from serendip.metrics import REPUTATION_UPDATES_TOTAL
from serendip.models.content import ContentItem, ContentMetrics
from serendip.models.reputation import DomainReputation, ModerationRecord

logger = logging.getLogger(__name__)

BLACKLIST_FLAG_THRESHOLD = 5
BLACKLIST_REJECTION_RATIO = 0.8
BLACKLIST_MIN_SCORE = 0.2
DECAY_GRACE_DAYS = 90
DECAY_PERIOD_DAYS = 180
UNKNOWN_AGE_DAYS = 365.0


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def compute_trust_score(
    approved: int,
    rejected: int,
    flagged: int,
    avg_quality: float,
    avg_engagement: float,
) -> float:
    moderated = approved + rejected
    moderation_ratio = approved / moderated if moderated > 0 else 0.5
    flag_penalty = max(0.0, 1 - flagged * 0.1)
    return _clamp(
        moderation_ratio * 0.4
        + avg_quality * 0.3
        + avg_engagement * 0.2
        + flag_penalty * 0.1
    )


def compute_reputation_score(
    trust: float,
    avg_quality: float,
    avg_engagement: float,
    total_content: int,
    days_since_last_content: float,
) -> float:
    base = trust * 0.6 + avg_quality * 0.4
    engagement_multiplier = 0.8 + avg_engagement * 0.4
    volume_confidence = min(1.0, math.log10(total_content + 1) / 2)
    if days_since_last_content <= DECAY_GRACE_DAYS:
        decay = 1.0
    else:
        decay = math.exp(-(days_since_last_content - DECAY_GRACE_DAYS) / DECAY_PERIOD_DAYS)
    return _clamp(base * engagement_multiplier * volume_confidence * decay)


def should_blacklist(approved: int, rejected: int, flagged: int, score: float) -> bool:
    rejection_ratio = rejected / max(1, approved + rejected)
    return (
        flagged >= BLACKLIST_FLAG_THRESHOLD
        or rejection_ratio > BLACKLIST_REJECTION_RATIO
        or score < BLACKLIST_MIN_SCORE
    )


@dataclass
class DomainQualityStats:
    total_content: int
    avg_quality: float
    avg_engagement: float
    last_content_at: datetime | None


@dataclass
class ModerationCounts:
    approved: int = 0
    rejected: int = 0
    flagged: int = 0


class DomainReputationManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_delay_s: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.batch_delay_s = batch_delay_s if batch_delay_s is not None else settings.REPUTATION_BATCH_DELAY_S
        self._sleep = sleep

    async def _quality_stats(self, session: AsyncSession, domain: str) -> DomainQualityStats | None:
        rows = (
            await session.execute(
                select(ContentItem.quality_score, ContentItem.created_at, ContentMetrics.engagement_rate)
                .outerjoin(ContentMetrics, ContentMetrics.content_id == ContentItem.id)
                .where(ContentItem.domain == domain, ContentItem.is_active.is_(True))
            )
        ).all()
        if not rows:
            return None

        total_quality = 0.0
        total_engagement = 0.0
        with_metrics = 0
        last_content_at: datetime | None = None
        for quality, created_at, engagement in rows:
            total_quality += quality or 0.0
            if engagement is not None:
                total_engagement += engagement
                with_metrics += 1
            created_at = as_utc(created_at)
            if created_at and (last_content_at is None or created_at > last_content_at):
                last_content_at = created_at

        return DomainQualityStats(
            total_content=len(rows),
            avg_quality=total_quality / len(rows),
            avg_engagement=total_engagement / with_metrics if with_metrics else 0.0,
            last_content_at=last_content_at,
        )

    async def _moderation_counts(self, session: AsyncSession, domain: str) -> ModerationCounts:
        content_ids = select(ContentItem.id).where(ContentItem.domain == domain).scalar_subquery()
        base = select(func.count(ModerationRecord.id)).where(ModerationRecord.content_id.in_(content_ids))
        approved = (await session.execute(base.where(ModerationRecord.status == "approved"))).scalar_one()
        rejected = (await session.execute(base.where(ModerationRecord.status == "rejected"))).scalar_one()
        flagged = (await session.execute(base.where(ModerationRecord.is_flagged.is_(True)))).scalar_one()
        return ModerationCounts(approved=approved, rejected=rejected, flagged=flagged)

    async def update(self, domain: str) -> DomainReputation | None:
        """Recompute and persist one domain. Returns None when it has no active content."""
        try:
            async with self._session_factory() as session:
                stats = await self._quality_stats(session, domain)
                if stats is None:
                    logger.info("No active content for domain %s", domain)
                    REPUTATION_UPDATES_TOTAL.labels(outcome="no_content").inc()
                    return None
                moderation = await self._moderation_counts(session, domain)

                now = utcnow()
                if stats.last_content_at is not None:
                    days_since = (now - stats.last_content_at).total_seconds() / 86400
                else:
                    days_since = UNKNOWN_AGE_DAYS

                trust = compute_trust_score(
                    moderation.approved,
                    moderation.rejected,
                    moderation.flagged,
                    stats.avg_quality,
                    stats.avg_engagement,
                )
                score = compute_reputation_score(
                    trust, stats.avg_quality, stats.avg_engagement, stats.total_content, days_since
                )
                blacklisted = should_blacklist(moderation.approved, moderation.rejected, moderation.flagged, score)

                record = await session.get(DomainReputation, domain)
                if record is None:
                    record = DomainReputation(domain=domain)
                    session.add(record)
                record.score = score
                record.trust_score = trust
                record.approved_count = moderation.approved
                record.rejected_count = moderation.rejected
                record.flagged_count = moderation.flagged
                record.avg_quality_score = stats.avg_quality
                record.avg_engagement_rate = stats.avg_engagement
                record.total_content = stats.total_content
                record.is_blacklisted = blacklisted
                if blacklisted and not record.blacklist_reason:
                    record.blacklist_reason = "auto: reputation rules"
                record.last_updated = now
                await session.commit()
        except SQLAlchemyError as exc:
            REPUTATION_UPDATES_TOTAL.labels(outcome="error").inc()
            raise ReputationComputeFailure(domain, str(exc)) from exc

        REPUTATION_UPDATES_TOTAL.labels(outcome="updated").inc()
        logger.info(
            "Updated reputation for %s: score=%.3f trust=%.3f blacklisted=%s",
            domain, score, trust, blacklisted,
        )
        return record

    async def get(self, domain: str) -> DomainReputation | None:
        async with self._session_factory() as session:
            return await session.get(DomainReputation, domain)

    async def top_domains(self, limit: int = 50) -> list[DomainReputation]:
        async with self._session_factory() as session:
            rows = await session.execute(
                select(DomainReputation)
                .where(DomainReputation.is_blacklisted.is_(False))
                .order_by(DomainReputation.score.desc())
                .limit(limit)
            )
            return list(rows.scalars())

    async def blacklisted(self) -> list[DomainReputation]:
        async with self._session_factory() as session:
            rows = await session.execute(
                select(DomainReputation)
                .where(DomainReputation.is_blacklisted.is_(True))
                .order_by(DomainReputation.flagged_count.desc())
            )
            return list(rows.scalars())

    async def blacklist(self, domain: str, reason: str) -> DomainReputation:
        async with self._session_factory() as session:
            record = await session.get(DomainReputation, domain)
            if record is None:
                record = DomainReputation(domain=domain)
                session.add(record)
            record.is_blacklisted = True
            record.blacklist_reason = reason
            record.score = 0.0
            record.last_updated = utcnow()
            await session.commit()
        logger.warning("Blacklisted domain %s: %s", domain, reason)
        return record

    async def unblacklist(self, domain: str) -> DomainReputation:
        """Recompute the domain, then clear the flag whatever the recomputed score says."""
        try:
            await self.update(domain)
        except ReputationComputeFailure as exc:
            logger.error("Recompute before unblacklist failed: %s", exc)

        async with self._session_factory() as session:
            record = await session.get(DomainReputation, domain)
            if record is None:
                record = DomainReputation(domain=domain)
                session.add(record)
            record.is_blacklisted = False
            record.blacklist_reason = None
            record.last_updated = utcnow()
            await session.commit()
        logger.info("Removed %s from blacklist", domain)
        return record

    async def domains_with_recent_content(self, days_threshold: int) -> list[str]:
        cutoff = utcnow() - timedelta(days=days_threshold)
        async with self._session_factory() as session:
            rows = await session.execute(
                select(ContentItem.domain)
                .where(ContentItem.is_active.is_(True), ContentItem.created_at >= cutoff)
                .distinct()
                .order_by(ContentItem.domain)
            )
            return list(rows.scalars())

    async def update_all(self, days_threshold: int | None = None) -> dict[str, int]:
        days = days_threshold if days_threshold is not None else settings.REPUTATION_WINDOW_DAYS
        domains = await self.domains_with_recent_content(days)
        logger.info("Updating reputation for %s domains active in the last %s days", len(domains), days)

        updated = errors = 0
        for index, domain in enumerate(domains):
            try:
                result = await self.update(domain)
            except ReputationComputeFailure as exc:
                logger.error("%s", exc)
                result = None
            if result is not None:
                updated += 1
            else:
                errors += 1
            if index < len(domains) - 1:
                await self._sleep(self.batch_delay_s)

        summary = {"processed": len(domains), "updated": updated, "errors": errors}
        logger.info("Domain reputation batch complete", extra=summary)
        return summary
