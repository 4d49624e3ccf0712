"""Next-discovery orchestration: load, filter, score, select, record."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.config import settings
from serendip.db import utcnow
from serendip.errors import NoCandidatesAvailable
from serendip.metrics import DISCOVERY_REQUESTS_TOTAL, DISCOVERY_SCORE_OBS, DISCOVERY_SELECTION_TOTAL
from serendip.repository import DiscoveryRepository
from serendip.scoring.discovery import RandomSource, ScoredCandidate, ScoringContext, score_candidate
from serendip.scoring.reasons import generate_reason
from serendip.scoring.selection import select_candidate

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    discovery: dict[str, Any]
    score: float
    reason: str
    reset_required: bool = False
    rank: int = 1
    debug: dict[str, float] = field(default_factory=dict)


def _discovery_payload(scored: ScoredCandidate) -> dict[str, Any]:
    c = scored.candidate
    return {
        "id": c.id,
        "url": c.url,
        "title": c.title,
        "description": c.description or "",
        "image": c.image_url or "",
        "domain": c.domain,
        "topics": c.topic_names,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "quality": scored.quality,
    }


class DiscoveryService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        candidate_limit: int | None = None,
        algorithm_version: str | None = None,
        rng: RandomSource | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.candidate_limit = candidate_limit or settings.DISCOVERY_CANDIDATE_LIMIT
        self.algorithm_version = algorithm_version or settings.DISCOVERY_ALGORITHM_VERSION
        self._rng = rng or random.Random()

    async def next_discovery(
        self,
        user_id: str,
        wildness: int,
        seen_ids: Iterable[str] = (),
        *,
        now: datetime | None = None,
    ) -> DiscoveryResult:
        now = now or utcnow()
        wildness = max(0, min(100, int(wildness)))

        async with self._session_factory() as session:
            repo = DiscoveryRepository(session)
            prefs = await repo.user_preferences(user_id)
            pool = await repo.active_candidates(
                self.candidate_limit,
                exclude_ids=seen_ids,
                blocked_domains=prefs.blocked_domains,
            )
            reset_required = False
            if not pool:
                pool = await repo.active_candidates(self.candidate_limit)
                reset_required = bool(pool)
            if not pool:
                DISCOVERY_REQUESTS_TOTAL.labels(outcome="no_candidates").inc()
                raise NoCandidatesAvailable("No content available")
            if reset_required:
                logger.info("All content seen by %s, falling back to the unfiltered pool", user_id)

            global_avg = await repo.global_engagement_average()
            history = await repo.interaction_history(user_id)
            reputations = await repo.domain_reputations({c.domain for c in pool})

            context = ScoringContext(
                user_topics=prefs.topics,
                wildness=wildness,
                engagement_history=prefs.engagement,
                time_of_day=now.hour,
                day_of_week=now.weekday(),
            )
            scored = [
                score_candidate(
                    candidate,
                    context,
                    history=history,
                    domain_reputation=reputations.get(candidate.domain, 0.5),
                    global_average_engagement=global_avg,
                    now=now,
                    rng=self._rng,
                )
                for candidate in pool
            ]
            scored.sort(key=lambda s: s.score, reverse=True)
            chosen, index = select_candidate(scored, wildness, self._rng)
            DISCOVERY_SELECTION_TOTAL.labels(branch="top" if index == 0 else "elite").inc()

            reason = generate_reason(chosen, prefs.topics, context)
            await repo.record_discovery_event(
                user_id=user_id,
                content_id=chosen.candidate.id,
                wildness=wildness,
                base_score=chosen.candidate.base_score or 0.5,
                final_score=chosen.score,
                rank=index + 1,
                algorithm_version=self.algorithm_version,
            )

        DISCOVERY_REQUESTS_TOTAL.labels(outcome="reset" if reset_required else "served").inc()
        DISCOVERY_SCORE_OBS.observe(chosen.score)
        logger.info(
            "Served discovery",
            extra={
                "user_id": user_id,
                "content_id": chosen.candidate.id,
                "rank": index + 1,
                "pool": len(pool),
                "wildness": wildness,
            },
        )
        return DiscoveryResult(
            discovery=_discovery_payload(chosen),
            score=round(chosen.score, 3),
            reason=reason,
            reset_required=reset_required,
            rank=index + 1,
            debug=chosen.debug(),
        )
