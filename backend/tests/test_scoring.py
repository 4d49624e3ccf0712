from datetime import datetime, timedelta, timezone

import pytest

from serendip.scoring.discovery import (
    Candidate,
    EngagementHistory,
    InteractionHistory,
    MetricsSnapshot,
    ScoringContext,
    apply_bayesian_smoothing,
    calculate_domain_affinity,
    calculate_engagement_score,
    calculate_exploration_boost,
    calculate_freshness,
    calculate_overall_score,
    calculate_personalization_score,
    calculate_popularity_score,
    calculate_similarity,
    calculate_topic_affinity,
    is_trending,
    score_candidate,
)


class FixedRandom:
    """Deterministic stand-in for random.Random."""

    def __init__(self, value: float = 0.99, uniform_value: float = 0.0) -> None:
        self.value = value
        self.uniform_value = uniform_value

    def random(self) -> float:
        return self.value

    def uniform(self, a: float, b: float) -> float:
        return self.uniform_value


def test_freshness_is_one_at_zero_and_halves_per_half_life() -> None:
    assert calculate_freshness(0) == 1.0
    assert calculate_freshness(14) == pytest.approx(0.5)
    assert calculate_freshness(28) == pytest.approx(0.25)


def test_freshness_is_bounded_and_monotonic() -> None:
    values = [calculate_freshness(age) for age in (0, 0.5, 1, 7, 30, 365, 5000)]
    assert all(0 < v <= 1 for v in values)
    assert values == sorted(values, reverse=True)


def test_bayesian_smoothing_returns_prior_without_evidence() -> None:
    assert apply_bayesian_smoothing(0, 0, 0.5, 10) == 0.5
    assert apply_bayesian_smoothing(10, 10, 0.5, 10) == pytest.approx(0.75)


def test_engagement_score_is_neutral_without_interactions_and_clamped() -> None:
    assert calculate_engagement_score(MetricsSnapshot()) == 0.5
    liked = calculate_engagement_score(MetricsSnapshot(likes_count=100, saves_count=100))
    assert liked == 1.0
    skipped = calculate_engagement_score(MetricsSnapshot(skip_count=1000))
    assert skipped == pytest.approx(0.1)


def test_popularity_score_caps_at_one() -> None:
    metrics = MetricsSnapshot(likes_count=5, skip_count=5)
    fresh = calculate_popularity_score(metrics, age_days=0, global_average_engagement=0.9)
    old = calculate_popularity_score(metrics, age_days=60, global_average_engagement=0.9)
    assert fresh > old
    assert calculate_popularity_score(metrics, 0, 0.01) == 1.0


def test_similarity_defaults_and_confidence_weighting() -> None:
    assert calculate_similarity([], [("science", 0.9)]) == 0.3
    assert calculate_similarity(["science"], []) == 0.2
    assert calculate_similarity(["science"], [("science", 1.0)]) == pytest.approx(1.0)
    # missing confidence counts as 0.5
    assert calculate_similarity(["science"], [("science", None), ("art", 0.5)]) == pytest.approx(0.65)


def test_topic_affinity_and_domain_affinity() -> None:
    assert calculate_topic_affinity([], {"a": 1}, {}) == 0.5
    assert calculate_topic_affinity(["x"], {"a": 1}, {}) == 0.5
    assert calculate_topic_affinity(["a"], {"a": 4}, {}) == 1.0
    assert calculate_topic_affinity(["a"], {}, {"a": 2}) == pytest.approx(0.25)
    assert calculate_domain_affinity("example.com", {}) == 0.5
    assert calculate_domain_affinity("example.com", {"example.com": 100}) == 1.0


def test_personalization_blends_topic_domain_and_reputation() -> None:
    history = InteractionHistory(liked_topics={"science": 3})
    score = calculate_personalization_score(["science"], "example.com", history, domain_reputation=0.5)
    assert score == pytest.approx(0.6 * 1.0 + 0.2 * 0.5 + 0.2 * 0.5)


def test_exploration_boost_by_wildness_band() -> None:
    assert calculate_exploration_boost(0, 0.8, 0.5) == pytest.approx(0.72)
    assert calculate_exploration_boost(20, 0.8, 0.5) == pytest.approx(0.9)
    wild = calculate_exploration_boost(100, 1.0, 1.0, FixedRandom(uniform_value=0.0))
    assert wild == pytest.approx(0.2)
    assert calculate_exploration_boost(100, 1.0, 1.0, FixedRandom(uniform_value=-1.0)) == 0.1


def test_overall_score_reference_scenario() -> None:
    context = ScoringContext(user_topics=["science"], wildness=0)
    score = calculate_overall_score(
        base_score=0.8,
        quality_score=0.9,
        freshness_score=1.0,
        popularity_score=0.7,
        similarity_score=1.0,
        domain_reputation=0.8,
        context=context,
        rng=FixedRandom(0.99),
    )
    assert score == pytest.approx(0.56448)
    assert round(score, 3) == 0.564


def test_overall_score_epsilon_branch_adds_exploration_bonus() -> None:
    context = ScoringContext(user_topics=[], wildness=100)
    base = calculate_overall_score(0.5, 0.5, 1.0, 0.5, 0.5, 0.5, context, FixedRandom(0.99))
    boosted = calculate_overall_score(
        0.5, 0.5, 1.0, 0.5, 0.5, 0.5, context, FixedRandom(0.01, uniform_value=0.3)
    )
    assert boosted == pytest.approx(base + 0.3)


def test_overall_score_context_multipliers_and_clamp() -> None:
    evening = ScoringContext(user_topics=[], wildness=0, time_of_day=20)
    morning = ScoringContext(user_topics=[], wildness=0, time_of_day=9)
    rng = FixedRandom(0.99)
    assert calculate_overall_score(0.5, 0.5, 1, 1, 0.0, 0.5, evening, rng) > calculate_overall_score(
        0.5, 0.5, 1, 1, 0.0, 0.5, morning, rng
    )

    skipper = ScoringContext(
        user_topics=[], wildness=0, engagement_history=EngagementHistory(skip_rate=0.9, like_rate=0.9)
    )
    assert calculate_overall_score(1, 1, 1, 1, 1.0, 1.0, skipper, rng) == 1.0


def test_is_trending() -> None:
    assert is_trending(0.9, 0) is True
    assert is_trending(0.9, 30) is False
    assert is_trending(0.5, 0) is False


def test_score_candidate_uses_metrics_and_personalization() -> None:
    now = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
    candidate = Candidate(
        id="c1",
        url="https://example.com/a",
        title="A",
        domain="example.com",
        topics=[("science", 0.8)],
        created_at=now - timedelta(days=14),
        quality_score=0.9,
        base_score=0.8,
        metrics=MetricsSnapshot(likes_count=3, skip_count=1),
    )
    context = ScoringContext(user_topics=["science"], wildness=0)

    plain = score_candidate(candidate, context, history=InteractionHistory(), now=now, rng=FixedRandom())
    assert plain.freshness == pytest.approx(0.5)
    assert plain.age_days == pytest.approx(14)
    assert 0 <= plain.score <= 1
    assert plain.debug()["freshness"] == 0.5

    disliked = InteractionHistory(liked_topics={"art": 1}, disliked_topics={"science": 5})
    personalized = score_candidate(candidate, context, history=disliked, now=now, rng=FixedRandom())
    assert personalized.similarity < plain.similarity


def test_score_candidate_defaults_missing_scores_to_neutral() -> None:
    candidate = Candidate(
        id="c2", url="https://example.org/", title="B", domain="example.org", topics=[], created_at=None
    )
    scored = score_candidate(
        candidate,
        ScoringContext(user_topics=[], wildness=0),
        history=InteractionHistory(),
        rng=FixedRandom(),
    )
    assert scored.quality == 0.5
    assert scored.popularity == 0.5
    assert scored.freshness == 1.0
