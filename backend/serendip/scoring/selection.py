"""Weighted-random selection over the ranked candidate pool."""
from __future__ import annotations

import math
import random
from typing import Sequence, TypeVar

from serendip.scoring.discovery import RandomSource

T = TypeVar("T")

ELITE_FRACTION = 0.3
MAX_ELITE = 8
MAX_RANDOMNESS = 0.8

_default_rng = random.Random()


def elite_size(pool_size: int) -> int:
    return max(1, min(MAX_ELITE, math.ceil(pool_size * ELITE_FRACTION)))


def select_candidate(
    ranked: Sequence[T],
    wildness: float,
    rng: RandomSource | None = None,
) -> tuple[T, int]:
    """Choose from ``ranked`` (best first). Returns the pick and its rank."""
    if not ranked:
        raise ValueError("cannot select from an empty pool")
    rng = rng or _default_rng
    top = elite_size(len(ranked))
    randomness = min(MAX_RANDOMNESS, wildness / 100)

    if top > 1 and rng.random() < randomness:
        weights = [2 ** (top - i - 1) for i in range(top)]
        remaining = rng.random() * sum(weights)
        for index, weight in enumerate(weights):
            remaining -= weight
            if remaining <= 0:
                return ranked[index], index
        return ranked[0], 0
    return ranked[0], 0
