"""
Monte Carlo fallback simulator for level-up outcomes.

Samples many level-up sequences under a pluggable LevelUpRule and builds
an empirical distribution over final stat vectors.

Trials run in fixed-size batches. Batch j draws from the j-th child of
SeedSequence(seed), so the result depends only on (seed, trials,
batch_size): never on the number of worker threads or the order in which
batches finish. Per-batch tallies are integer counts merged by summation.
"""

import numpy as np
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple
import logging

from ..types import Distribution, EngineConfig, GrowthQuery, Growths, Promotion, SimulationResult
from ..errors import InvalidQuery, check_cancelled, validate_promotion, validate_query
from .rules import IndependentGrowthRule, LevelUpRule

logger = logging.getLogger(__name__)

# (gains applied first or None, growths, level-ups)
Stage = Tuple[Optional[np.ndarray], Growths, int]


def simulate(
    query: GrowthQuery,
    trials: int,
    seed: int,
    rule: Optional[LevelUpRule] = None,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None,
    promotion: Optional[Promotion] = None,
    levels_after: int = 0
) -> SimulationResult:
    """
    Empirical distribution of query.levels level-ups over `trials` runs,
    optionally followed by a promotion and levels_after more level-ups.

    Args:
        query: Starting vector, growths and level count
        trials: Number of independent runs (>= 1)
        seed: Non-negative seed for reproducibility
        rule: Level-up mechanic (default: independent rolls)
        config: Engine config (batch_size, workers, capped-roll flag)
        cancel: Event-like token checked between batches
        promotion: Applied to every trial after query.levels level-ups
        levels_after: Level-ups under the promoted growths

    Returns:
        SimulationResult with the empirical distribution and its error metadata

    Raises:
        InvalidQuery: Malformed query or promotion, trials < 1 or negative seed
        Cancelled: cancel was set
    """
    validate_query(query)
    if trials < 1:
        raise InvalidQuery(f"trials must be >= 1, got {trials}")
    if seed < 0:
        raise InvalidQuery(f"seed must be non-negative, got {seed}")

    stages: List[Stage] = [(None, query.growths, query.levels)]
    if promotion is not None:
        validate_promotion(promotion, query.n_stats, levels_after)
        stages.append((promotion.gains_array(), promotion.growths, levels_after))

    if config is None:
        config = EngineConfig()
    if rule is None:
        rule = IndependentGrowthRule(config.capped_rolls_consume_rng)

    batch_sizes = _split_trials(trials, config.batch_size)
    children = np.random.SeedSequence(seed).spawn(len(batch_sizes))

    logger.info(
        f"Simulating {trials} trials x {sum(s[2] for s in stages)} levels "
        f"({len(batch_sizes)} batches, rule={rule.describe()}, workers={config.workers})"
    )

    tally: Counter = Counter()

    if config.workers == 1 or len(batch_sizes) == 1:
        for j, (size, child) in enumerate(zip(batch_sizes, children)):
            check_cancelled(cancel, f"before batch {j}")
            tally.update(_run_batch(query.start, stages, size, child, rule))
    else:
        executor = ThreadPoolExecutor(max_workers=config.workers)
        try:
            futures = {
                executor.submit(_run_batch_checked, query.start, stages, size, child, rule, cancel, j): j
                for j, (size, child) in enumerate(zip(batch_sizes, children))
            }
            for future in as_completed(futures):
                tally.update(future.result())
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    distribution = Distribution.from_dict(
        {vector: count / trials for vector, count in tally.items()},
        n_stats=query.n_stats
    )

    result = SimulationResult(
        distribution=distribution,
        trials=trials,
        seed=seed,
        rule=rule.describe(),
        batch_size=config.batch_size
    )
    logger.info(
        "Simulation done: %d support points, standard error %.2e",
        distribution.support_size, result.standard_error
    )
    return result


def _split_trials(trials: int, batch_size: int) -> List[int]:
    """Fixed batch sizes; only the last batch may be smaller."""
    full, rest = divmod(trials, batch_size)
    return [batch_size] * full + ([rest] if rest else [])


def _run_batch_checked(
    start: Tuple[int, ...],
    stages: List[Stage],
    size: int,
    seed_seq: np.random.SeedSequence,
    rule: LevelUpRule,
    cancel: Optional[object],
    batch_index: int
) -> Counter:
    check_cancelled(cancel, f"before batch {batch_index}")
    return _run_batch(start, stages, size, seed_seq, rule)


def _run_batch(
    start: Tuple[int, ...],
    stages: List[Stage],
    size: int,
    seed_seq: np.random.SeedSequence,
    rule: LevelUpRule
) -> Counter:
    """Run `size` trials through every stage and count final stat vectors."""
    k = len(start)
    if k == 0:
        return Counter({(): size})

    rng = np.random.default_rng(seed_seq)
    stats = np.tile(np.array(start, dtype=np.int64), (size, 1))

    for gains, growths, levels in stages:
        rates = growths.rates_array()
        caps = growths.caps_array()
        if gains is not None:
            # Promotion: fixed gains, clipped at the new caps
            stats = np.minimum(stats + gains, caps)
        for _ in range(levels):
            increases = rule.sample(stats, rates, caps, rng)
            stats = np.minimum(stats + increases, caps)

    unique, counts = np.unique(stats, axis=0, return_counts=True)
    return Counter({
        tuple(int(v) for v in row): int(c) for row, c in zip(unique, counts)
    })
