"""
Public operations of the growth distribution engine.

Wires query validation, the cache, the exact engine and the simulator
together for callers (front-ends, the CLI).
"""

from typing import Optional, Sequence, Union
import logging

from .types import (
    Distribution, EngineConfig, GrowthQuery, Growths, IntractableSignal, Promotion,
    SimulationResult
)
from .errors import Intractable
from .cache import DistributionCache
from .exact.engine import compute_exact, compute_promoted
from .simulation.engine import simulate
from .simulation.rules import LevelUpRule

logger = logging.getLogger(__name__)

# Trials used when compute_or_simulate falls back to simulation
DEFAULT_FALLBACK_TRIALS = 1 << 20


def _resolve_config(
    config: Optional[EngineConfig],
    cache: Optional[DistributionCache]
) -> EngineConfig:
    """The config to run with; a cache brings its own."""
    if cache is None:
        return config if config is not None else EngineConfig()
    if config is not None and config != cache.config:
        raise ValueError(
            "config conflicts with the cache's config; pass one or the other "
            "(cached results are computed with the cache's config)"
        )
    return cache.config


def _signal(exc: Intractable) -> IntractableSignal:
    logger.info(f"Exact computation intractable: {exc}")
    return IntractableSignal(
        levels_completed=exc.levels_completed,
        support_size=exc.support_size,
        max_support=exc.max_support
    )


def compute_distribution(
    start: Sequence[int],
    growths: Growths,
    levels: int,
    config: Optional[EngineConfig] = None,
    cache: Optional[DistributionCache] = None,
    cancel: Optional[object] = None
) -> Union[Distribution, IntractableSignal]:
    """
    Exact distribution after `levels` level-ups.

    Args:
        start: Starting stat vector
        growths: Growth rates and caps
        levels: Number of level-ups
        config: Engine config; with a cache it must be omitted or equal
            to the cache's
        cache: Optional cache to read from and populate
        cancel: Event-like token checked at every level transition

    Returns:
        The Distribution, or an IntractableSignal if the support ceiling
        would be exceeded

    Raises:
        InvalidQuery: Malformed input
        Cancelled: cancel was set
        ValueError: config and cache.config disagree
    """
    query = GrowthQuery(start=tuple(start), growths=growths, levels=levels)
    config = _resolve_config(config, cache)

    try:
        if cache is not None:
            return cache.get_or_compute(query, cancel)
        return compute_exact(query, config, cancel)
    except Intractable as exc:
        return _signal(exc)


def compute_promoted_distribution(
    start: Sequence[int],
    growths: Growths,
    levels: int,
    promotion: Promotion,
    levels_after: int = 0,
    config: Optional[EngineConfig] = None,
    cache: Optional[DistributionCache] = None,
    cancel: Optional[object] = None
) -> Union[Distribution, IntractableSignal]:
    """
    Exact distribution after `levels` level-ups, a promotion and
    `levels_after` level-ups under the promoted growths.

    The part before the promotion is read from (and stored in) the cache
    when one is given.
    """
    query = GrowthQuery(start=tuple(start), growths=growths, levels=levels)
    config = _resolve_config(config, cache)

    try:
        before = cache.get_or_compute(query, cancel) if cache is not None else None
        return compute_promoted(query, promotion, levels_after, config, cancel, before=before)
    except Intractable as exc:
        return _signal(exc)


def simulate_distribution(
    start: Sequence[int],
    growths: Growths,
    levels: int,
    trials: int,
    seed: int,
    rule: Optional[LevelUpRule] = None,
    config: Optional[EngineConfig] = None,
    cancel: Optional[object] = None,
    promotion: Optional[Promotion] = None,
    levels_after: int = 0
) -> SimulationResult:
    """Empirical distribution after `levels` level-ups under `rule`."""
    query = GrowthQuery(start=tuple(start), growths=growths, levels=levels)
    return simulate(
        query, trials, seed, rule=rule, config=config, cancel=cancel,
        promotion=promotion, levels_after=levels_after
    )


def compute_or_simulate(
    start: Sequence[int],
    growths: Growths,
    levels: int,
    seed: int,
    trials: int = DEFAULT_FALLBACK_TRIALS,
    rule: Optional[LevelUpRule] = None,
    config: Optional[EngineConfig] = None,
    cache: Optional[DistributionCache] = None,
    cancel: Optional[object] = None,
    promotion: Optional[Promotion] = None,
    levels_after: int = 0
) -> Union[Distribution, SimulationResult]:
    """
    Exact distribution when possible, simulation otherwise.

    A rule other than plain independent rolls always goes to the simulator:
    the exact engine only models independent per-stat trials.
    """
    config = _resolve_config(config, cache)

    if rule is None or rule.name == "independent":
        if promotion is None:
            result = compute_distribution(start, growths, levels, config, cache, cancel)
        else:
            result = compute_promoted_distribution(
                start, growths, levels, promotion, levels_after, config, cache, cancel
            )
        if isinstance(result, Distribution):
            return result
        logger.warning(
            "Support would exceed %d points at level %d; falling back to %d simulated trials",
            result.max_support, result.levels_completed + 1, trials
        )

    return simulate_distribution(
        start, growths, levels, trials, seed, rule=rule, config=config, cancel=cancel,
        promotion=promotion, levels_after=levels_after
    )
