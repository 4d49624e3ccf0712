"""Human-readable recommendation reasons."""
from __future__ import annotations

from typing import Sequence

from serendip.scoring.discovery import ScoredCandidate, ScoringContext


def generate_reason(scored: ScoredCandidate, user_topics: Sequence[str], context: ScoringContext) -> str:
    """Pick the first matching template, in fixed priority order."""
    wanted = set(user_topics)
    matching = [name for name in scored.candidate.topic_names if name in wanted]

    recent = scored.age_days < 2
    very_recent = scored.age_days < 0.5
    high_quality = scored.quality > 0.8
    popular = (scored.candidate.popularity_score or 0) > 0.7
    trending = scored.trending_score > 0.6
    wild = context.wildness > 70

    if very_recent and trending:
        return "Breaking: trending content from the last few hours"
    if len(matching) > 1 and recent:
        return f"Recent {' & '.join(matching[:2])} content matching your interests"
    if trending and matching:
        return f"Trending {matching[0]} content people are loving"
    if popular and high_quality and matching:
        return f"Popular high-quality {matching[0]} content"
    if matching and high_quality:
        return f"Quality {matching[0]} content curated for you"
    if recent and high_quality:
        return "Fresh, high-quality content to explore"
    if wild and not matching:
        return "Serendipitous discovery - time to explore something new!"
    if matching:
        return f"Based on your interest in {' and '.join(matching[:2])}"
    if high_quality:
        return "Curated high-quality content"
    if wild:
        return "Wild discovery based on your exploration settings"
    return "Recommended content to discover"
