"""Discovery scoring: per-candidate signals and the composite score.

All functions are pure. Randomness comes from an injected ``random.Random``
compatible object so a scoring pass can be replayed with a fixed seed.
"""
from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Protocol, Sequence


class RandomSource(Protocol):
    def random(self) -> float: ...

    def uniform(self, a: float, b: float) -> float: ...


_default_rng = random.Random()

FRESHNESS_HALF_LIFE_DAYS = 14.0
POPULARITY_RECENCY_DAYS = 7.0
DEFAULT_GLOBAL_ENGAGEMENT = 0.3
DEFAULT_TOPIC_CONFIDENCE = 0.5
NEUTRAL = 0.5


@dataclass
class EngagementHistory:
    like_rate: float = 0.0
    save_rate: float = 0.0
    skip_rate: float = 0.0


@dataclass
class ScoringContext:
    user_topics: list[str]
    wildness: int
    engagement_history: EngagementHistory | None = None
    time_of_day: int | None = None
    day_of_week: int | None = None


@dataclass
class MetricsSnapshot:
    views_count: int = 0
    likes_count: int = 0
    saves_count: int = 0
    shares_count: int = 0
    skip_count: int = 0
    engagement_rate: float = 0.0


@dataclass
class InteractionHistory:
    liked_topics: dict[str, int] = field(default_factory=dict)
    disliked_topics: dict[str, int] = field(default_factory=dict)
    liked_domains: dict[str, int] = field(default_factory=dict)


@dataclass
class Candidate:
    """A content item as seen by the scorer."""

    id: str
    url: str
    title: str
    domain: str
    topics: list[tuple[str, float | None]]
    created_at: datetime | None
    description: str | None = None
    image_url: str | None = None
    base_score: float | None = None
    quality_score: float | None = None
    popularity_score: float | None = None
    metrics: MetricsSnapshot | None = None

    @property
    def topic_names(self) -> list[str]:
        return [name for name, _ in self.topics]


@dataclass
class ScoredCandidate:
    candidate: Candidate
    score: float
    age_days: float
    freshness: float
    similarity: float
    popularity: float
    quality: float
    domain_reputation: float
    trending_score: float

    def debug(self) -> dict[str, float]:
        return {
            "age_days": round(self.age_days, 1),
            "freshness": round(self.freshness, 3),
            "similarity": round(self.similarity, 3),
            "popularity": round(self.popularity, 3),
            "quality": self.quality,
            "domain_reputation": round(self.domain_reputation, 3),
        }


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def age_in_days(created_at: datetime | None, now: datetime | None = None) -> float:
    if created_at is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / 86400)


def calculate_freshness(age_days: float, half_life: float = FRESHNESS_HALF_LIFE_DAYS) -> float:
    return math.exp(-math.log(2) * age_days / half_life)


def apply_bayesian_smoothing(
    positive: float,
    total: float,
    prior: float = 0.5,
    prior_weight: float = 10,
) -> float:
    if total == 0:
        return prior
    return (positive + prior * prior_weight) / (total + prior_weight)


def calculate_engagement_score(metrics: MetricsSnapshot) -> float:
    total = metrics.likes_count + metrics.saves_count + metrics.shares_count + metrics.skip_count
    if total == 0:
        return NEUTRAL
    positive = metrics.likes_count + metrics.saves_count * 1.2 + metrics.shares_count * 0.8
    return _clamp(apply_bayesian_smoothing(positive, total, 0.5, 10), 0.1, 1.0)


def calculate_popularity_score(
    metrics: MetricsSnapshot,
    age_days: float,
    global_average_engagement: float = DEFAULT_GLOBAL_ENGAGEMENT,
) -> float:
    engagement = calculate_engagement_score(metrics)
    recency_boost = math.exp(-age_days / POPULARITY_RECENCY_DAYS) * 0.3
    relative = engagement / max(0.1, global_average_engagement)
    return min(1.0, relative + recency_boost)


def calculate_similarity(
    user_topics: Sequence[str],
    content_topics: Iterable[tuple[str, float | None]],
) -> float:
    content_topics = list(content_topics)
    if not user_topics:
        return 0.3
    if not content_topics:
        return 0.2

    wanted = set(user_topics)
    total_weight = 0.0
    match_weight = 0.0
    for name, confidence in content_topics:
        weight = confidence or DEFAULT_TOPIC_CONFIDENCE
        total_weight += weight
        if name in wanted:
            match_weight += weight
    if total_weight == 0:
        return 0.2
    return 0.3 + 0.7 * (match_weight / total_weight)


def calculate_exploration_boost(
    wildness: float,
    base_similarity: float,
    content_popularity: float = 0.5,
    rng: RandomSource | None = None,
) -> float:
    if wildness < 20:
        return base_similarity * (0.8 + 0.2 * content_popularity)

    if wildness < 70:
        weight = (wildness - 20) / 50
        similarity_part = base_similarity * (1 - weight * 0.3)
        diversity_part = (1 - base_similarity) * weight * 0.5
        return similarity_part + diversity_part + content_popularity * 0.2

    rng = rng or _default_rng
    diversity_bonus = (1 - base_similarity) * 0.7
    popularity_penalty = content_popularity * -0.2
    return max(
        0.1,
        base_similarity * 0.4 + diversity_bonus + popularity_penalty + rng.uniform(0, 0.3),
    )


def calculate_topic_affinity(
    content_topics: Sequence[str],
    liked_topics: Mapping[str, int],
    disliked_topics: Mapping[str, int],
) -> float:
    if not content_topics:
        return NEUTRAL
    positive = negative = total = 0.0
    for topic in content_topics:
        likes = liked_topics.get(topic, 0)
        dislikes = disliked_topics.get(topic, 0)
        positive += likes
        negative += dislikes
        total += likes + dislikes
    if total == 0:
        return NEUTRAL
    net = (positive - negative * 0.5) / total
    return _clamp(0.5 + net * 0.5)


def calculate_domain_affinity(domain: str, liked_domains: Mapping[str, int]) -> float:
    hits = liked_domains.get(domain, 0)
    if hits == 0:
        return NEUTRAL
    return min(1.0, 0.5 + math.log(hits + 1) * 0.2)


def calculate_personalization_score(
    content_topics: Sequence[str],
    content_domain: str,
    history: InteractionHistory,
    domain_reputation: float,
) -> float:
    topic_score = calculate_topic_affinity(content_topics, history.liked_topics, history.disliked_topics)
    domain_score = calculate_domain_affinity(content_domain, history.liked_domains)
    return _clamp(topic_score * 0.6 + domain_score * 0.2 + domain_reputation * 0.2)


def is_trending(quality: float, age_days: float) -> bool:
    return quality * calculate_freshness(age_days) > 0.6


def calculate_overall_score(
    base_score: float,
    quality_score: float,
    freshness_score: float,
    popularity_score: float,
    similarity_score: float,
    domain_reputation: float,
    context: ScoringContext,
    rng: RandomSource | None = None,
) -> float:
    rng = rng or _default_rng
    score0 = base_score * quality_score
    final = (
        score0
        * (0.5 + 0.5 * similarity_score)
        * (0.6 + 0.4 * freshness_score)
        * popularity_score
        * (0.8 + 0.4 * domain_reputation)
    )

    # epsilon-greedy: 5% at wildness 0 up to 10% at wildness 100
    exploration_rate = 0.05 + (context.wildness / 100) * 0.05
    if rng.random() < exploration_rate:
        final += rng.uniform(0, 0.3)

    multiplier = 1.0
    if context.time_of_day is not None and 18 <= context.time_of_day <= 22:
        multiplier *= 1 + (1 - similarity_score) * 0.1
    history = context.engagement_history
    if history is not None:
        if history.skip_rate > 0.5:
            multiplier *= 1 + (1 - similarity_score) * 0.15
        if history.like_rate > 0.6:
            multiplier *= 1 + similarity_score * 0.1

    return _clamp(final * multiplier)


def score_candidate(
    candidate: Candidate,
    context: ScoringContext,
    *,
    history: InteractionHistory,
    domain_reputation: float = NEUTRAL,
    global_average_engagement: float = DEFAULT_GLOBAL_ENGAGEMENT,
    now: datetime | None = None,
    rng: RandomSource | None = None,
) -> ScoredCandidate:
    age = age_in_days(candidate.created_at, now)
    freshness = calculate_freshness(age)
    base = candidate.base_score or NEUTRAL
    quality = candidate.quality_score or NEUTRAL

    similarity = calculate_similarity(context.user_topics, candidate.topics)
    if history.liked_topics:
        similarity = calculate_personalization_score(
            candidate.topic_names, candidate.domain, history, domain_reputation
        )

    if candidate.metrics is not None:
        popularity = calculate_popularity_score(candidate.metrics, age, global_average_engagement)
    else:
        popularity = candidate.popularity_score or NEUTRAL

    adjusted = calculate_exploration_boost(context.wildness, similarity, popularity, rng)
    score = calculate_overall_score(
        base, quality, freshness, popularity, adjusted, domain_reputation, context, rng
    )
    return ScoredCandidate(
        candidate=candidate,
        score=score,
        age_days=age,
        freshness=freshness,
        similarity=adjusted,
        popularity=popularity,
        quality=quality,
        domain_reputation=domain_reputation,
        trending_score=quality * freshness,
    )
