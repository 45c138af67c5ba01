"""
Single-level delta model.

Distribution of the 0/1-per-stat increase vector produced by one
level-up, given growth rates and which stats are already capped.
"""

from functools import lru_cache
from typing import Sequence, Tuple

import numpy as np

from ..types import Distribution


def level_delta(
    rates: Sequence[float],
    capped: Sequence[bool],
    capped_rolls_consume_rng: bool = True
) -> Distribution:
    """
    Increase-vector distribution for one level-up.

    Each uncapped stat is an independent Bernoulli trial with its growth
    rate. Capped stats are forced to 0. Whether a capped stat still rolls
    (capped_rolls_consume_rng) has no effect on this distribution: the roll
    cannot change the value. The flag only matters to rules that look at
    the rolls themselves (see simulation.rules).

    Outcomes with zero probability (rates of exactly 0 or 1) are dropped,
    so the support has at most 2^(k - capped_count) entries.

    Args:
        rates: Per-stat growth rates in [0, 1]
        capped: Per-stat flags, True if the stat is at its cap

    Returns:
        Distribution over {0,1}^k; k = 0 gives {(): 1.0}
    """
    return _cached_delta(
        tuple(float(r) for r in rates),
        tuple(bool(c) for c in capped),
        bool(capped_rolls_consume_rng)
    )


@lru_cache(maxsize=4096)
def _cached_delta(
    rates: Tuple[float, ...],
    capped: Tuple[bool, ...],
    capped_rolls_consume_rng: bool
) -> Distribution:
    k = len(rates)
    if len(capped) != k:
        raise ValueError(f"Expected {k} capped flags, got {len(capped)}")

    vectors = np.zeros((1, k), dtype=np.int64)
    masses = np.ones(1, dtype=np.float64)

    for i, (rate, is_capped) in enumerate(zip(rates, capped)):
        if is_capped:
            continue

        outcomes = [(step, p) for step, p in ((0, 1.0 - rate), (1, rate)) if p > 0.0]
        n_out = len(outcomes)

        # Existing rows major, this stat's outcome minor: keeps lexicographic order
        vectors = np.repeat(vectors, n_out, axis=0)
        masses = np.repeat(masses, n_out)
        steps = np.tile([step for step, _ in outcomes], len(vectors) // n_out)
        probs = np.tile([p for _, p in outcomes], len(masses) // n_out)
        vectors[:, i] = steps
        masses = masses * probs

    return Distribution(vectors, masses)


def delta_size(capped: Sequence[bool]) -> int:
    """Upper bound on delta support: 2^(uncapped stats)."""
    return 2 ** sum(1 for c in capped if not c)
