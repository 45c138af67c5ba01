"""
Exact growth engine.

Dynamic-programming driver over level index i = 0..n. D_0 is the point
mass at the starting vector; D_{i+1} convolves every support point of
D_i with the delta for that point's own capped-stat set, then merges.

Support points are grouped by capped mask so the delta for each mask is
computed once per level. Within a group no stat reaches its cap, so the
shifted keys are accumulated directly into a dense box that bounds the
next support. The box size is checked against the ceiling before any
work is done. Extending a cached D_j to D_n runs the same transitions
with the same absolute level indices, so the result matches a direct
computation.
"""

import numpy as np
from typing import Iterator, List, Optional, Tuple
import logging

from ..types import Distribution, EngineConfig, GrowthQuery, Growths, Promotion, capped_mask
from ..errors import (
    Intractable, check_cancelled, check_mass, validate_promotion, validate_query
)
from .algebra import (
    accumulate_shifts, aggregate, box_size, encode, from_dense, normalize, strides
)
from .delta import level_delta

logger = logging.getLogger(__name__)


def next_bounds(
    vectors: np.ndarray,
    rates: np.ndarray,
    caps: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-stat [lo, hi] range that holds every vector one level later.

    A stat only moves up by one, and only below its cap; a rate of 1
    lifts the lower end as well.
    """
    lo = vectors.min(axis=0)
    hi = vectors.max(axis=0)
    lo = np.where(rates >= 1.0, np.minimum(lo + 1, caps), lo)
    hi = np.where(rates > 0.0, np.minimum(hi + 1, caps), hi)
    return lo, hi


def advance(
    dist: Distribution,
    growths: Growths,
    config: Optional[EngineConfig] = None,
    level_index: int = 0
) -> Distribution:
    """
    Apply one level-up transition: D_{i+1} from D_i.

    Args:
        dist: Distribution after level_index level-ups
        growths: Growth rates and caps
        config: Engine config (ceiling, renormalization, rng flag)
        level_index: Absolute index i of dist, decides renormalization

    Returns:
        Distribution after level_index + 1 level-ups

    Raises:
        Intractable: If the bound on the new support exceeds config.max_support
    """
    if config is None:
        config = EngineConfig()

    if dist.n_stats == 0:
        return dist

    caps = growths.caps_array()
    lo, hi = next_bounds(dist.vectors, growths.rates_array(), caps)
    widths = hi - lo + 1

    # Starting from a point mass the box is exactly the support reached
    # by independent rolls, so this refuses the same levels a full
    # convolution would
    bound = box_size(widths)
    if bound > config.max_support:
        raise Intractable(
            levels_completed=level_index,
            support_size=bound,
            max_support=config.max_support
        )

    box_strides = strides(widths)
    keys = encode(dist.vectors, lo, widths)
    acc = np.zeros(bound, dtype=np.float64)

    # Per-support-point capped sets, grouped so each delta is built once
    masks = capped_mask(dist.vectors, caps)
    unique_masks, group_of = np.unique(masks, axis=0, return_inverse=True)
    group_of = group_of.reshape(-1)

    for g, mask in enumerate(unique_masks):
        rows = group_of == g
        delta = level_delta(growths.rates, mask, config.capped_rolls_consume_rng)
        accumulate_shifts(
            acc, keys[rows], dist.masses[rows], delta.vectors @ box_strides, delta.masses
        )

    result = from_dense(acc, lo, widths)

    level = level_index + 1
    if config.renormalize_every and level % config.renormalize_every == 0:
        result = normalize(result)

    assert check_mass(result.masses, config.mass_tolerance), (
        f"Mass drift at level {level}: total={result.total_mass!r}"
    )

    return result


def promote(dist: Distribution, promotion: Promotion) -> Distribution:
    """
    Apply a promotion: add the fixed gains, then clip at the new caps.

    Deterministic, so mass is only moved, never split; outcomes that
    land on the same clipped vector merge.
    """
    if dist.n_stats != len(promotion.gains):
        raise ValueError(
            f"Cannot promote a distribution over {dist.n_stats} stats "
            f"with {len(promotion.gains)} gains"
        )
    if dist.n_stats == 0:
        return dist

    shifted = np.minimum(
        dist.vectors + promotion.gains_array(), promotion.growths.caps_array()
    )
    return aggregate(shifted, dist.masses)


def iterate_levels(
    query: GrowthQuery,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None,
    resume_from: Optional[Tuple[int, Distribution]] = None
) -> Iterator[Tuple[int, Distribution]]:
    """
    Yield (i, D_i) for every level i up to query.levels.

    Args:
        query: Validated on entry
        config: Engine config
        cancel: Event-like token (is_set()) checked before every transition
        resume_from: (j, D_j) previously computed for the same start and
            growths; iteration resumes at level j instead of 0

    Raises:
        InvalidQuery: Malformed query
        Intractable: Support ceiling exceeded
        Cancelled: cancel was set
    """
    validate_query(query)
    if config is None:
        config = EngineConfig()

    if resume_from is not None:
        level, dist = resume_from
        if level > query.levels:
            raise ValueError(
                f"Cannot resume from level {level} for a {query.levels}-level query"
            )
    else:
        level, dist = 0, Distribution.point(query.start)
        yield level, dist

    while level < query.levels:
        check_cancelled(cancel, f"at level {level}")
        dist = advance(dist, query.growths, config, level_index=level)
        level += 1
        logger.debug(f"Level {level}/{query.levels}: support={dist.support_size}")
        yield level, dist


def compute_exact(
    query: GrowthQuery,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None,
    resume_from: Optional[Tuple[int, Distribution]] = None
) -> Distribution:
    """
    Exact distribution after query.levels level-ups.

    All-or-nothing: either D_n is returned or an exception is raised.
    """
    dist = None
    if resume_from is not None:
        dist = resume_from[1]
    for _, dist in iterate_levels(query, config, cancel, resume_from):
        pass

    logger.info(
        "Exact distribution: %d stats, %d levels, %d support points",
        query.n_stats, query.levels, dist.support_size
    )
    return dist


def compute_progression(
    query: GrowthQuery,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None
) -> List[Distribution]:
    """Distributions after 0, 1, ..., n level-ups (n + 1 entries)."""
    return [dist for _, dist in iterate_levels(query, config, cancel)]


def extend(
    dist: Distribution,
    from_levels: int,
    query: GrowthQuery,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None
) -> Distribution:
    """Extend D_{from_levels} of the same start/growths to D_{query.levels}."""
    return compute_exact(query, config, cancel, resume_from=(from_levels, dist))


def compute_promoted(
    query: GrowthQuery,
    promotion: Promotion,
    levels_after: int = 0,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None,
    before: Optional[Distribution] = None
) -> Distribution:
    """
    Exact distribution of query.levels level-ups, a promotion, then
    levels_after more level-ups under the promoted growths.

    Args:
        query: Level-ups before the promotion
        promotion: Gains plus the growths used afterwards
        levels_after: Level-ups after the promotion
        config: Engine config
        cancel: Event-like token checked before every transition
        before: D_n of query if already known (e.g. from a cache)

    Raises:
        InvalidQuery: Malformed query or promotion
        Intractable: Support ceiling exceeded
        Cancelled: cancel was set
    """
    validate_query(query)
    validate_promotion(promotion, query.n_stats, levels_after)
    if config is None:
        config = EngineConfig()

    dist = before if before is not None else compute_exact(query, config, cancel)
    dist = promote(dist, promotion)

    # Level indices stay absolute so renormalization lines up
    total = query.levels + levels_after
    for level in range(query.levels, total):
        check_cancelled(cancel, f"at level {level}")
        dist = advance(dist, promotion.growths, config, level_index=level)
        logger.debug(f"Level {level + 1}/{total} (promoted): support={dist.support_size}")

    logger.info(
        "Promoted distribution: %d + %d levels, %d support points",
        query.levels, levels_after, dist.support_size
    )
    return dist
