import random

import pytest

from serendip.scoring.selection import elite_size, select_candidate


class SequenceRandom:
    def __init__(self, *values: float) -> None:
        self.values = list(values)

    def random(self) -> float:
        return self.values.pop(0)

    def uniform(self, a: float, b: float) -> float:
        return a


def test_elite_size_bounds() -> None:
    assert elite_size(1) == 1
    assert elite_size(3) == 1
    assert elite_size(4) == 2
    assert elite_size(7) == 3
    assert elite_size(1000) == 8


def test_zero_wildness_always_picks_top_ranked() -> None:
    ranked = [f"item-{i}" for i in range(20)]
    rng = random.Random(1234)
    for _ in range(200):
        assert select_candidate(ranked, 0, rng) == ("item-0", 0)


def test_weighted_sample_over_elite_set() -> None:
    ranked = [f"item-{i}" for i in range(7)]  # elite of 3, weights 4, 2, 1
    # first draw enters the random branch, second picks the position
    assert select_candidate(ranked, 100, SequenceRandom(0.1, 0.0)) == ("item-0", 0)
    assert select_candidate(ranked, 100, SequenceRandom(0.1, 5.0 / 7)) == ("item-1", 1)
    assert select_candidate(ranked, 100, SequenceRandom(0.1, 0.99)) == ("item-2", 2)


def test_randomness_is_capped_at_eighty_percent() -> None:
    ranked = [f"item-{i}" for i in range(7)]
    assert select_candidate(ranked, 100, SequenceRandom(0.85)) == ("item-0", 0)


def test_select_candidate_rejects_empty_pool() -> None:
    with pytest.raises(ValueError):
        select_candidate([], 50)
