"""
Error taxonomy for the growth distribution engine.

InvalidQuery is raised for malformed input and is never retried.
Intractable is a signal that the exact engine would exceed its support
ceiling; callers handle it by switching to simulation.
"""

from typing import Optional

import numpy as np

from .types import GrowthQuery, Promotion


class GrowthEngineError(Exception):
    """Base class for engine errors."""


class InvalidQuery(GrowthEngineError, ValueError):
    """Malformed query: stat above cap, rate out of range, negative level count."""


class Intractable(GrowthEngineError):
    """Exact computation would exceed the configured support ceiling."""

    def __init__(self, levels_completed: int, support_size: int, max_support: int):
        self.levels_completed = levels_completed
        self.support_size = support_size
        self.max_support = max_support
        super().__init__(
            f"Support would reach {support_size} points at level {levels_completed + 1} "
            f"(ceiling {max_support}); use simulation instead."
        )


class Cancelled(GrowthEngineError):
    """Caller requested cancellation of a running computation."""


def validate_query(query: GrowthQuery) -> None:
    """
    Check a query before any computation.

    Raises:
        InvalidQuery: On negative levels, length mismatches, stats outside
            [0, cap] or growth rates outside [0, 1]
    """
    if query.levels < 0:
        raise InvalidQuery(f"Level count must be >= 0, got {query.levels}")

    growths = query.growths
    k = len(query.start)
    if len(growths.rates) != k or len(growths.caps) != k:
        raise InvalidQuery(
            f"Stat count mismatch: {k} stats, {len(growths.rates)} rates, "
            f"{len(growths.caps)} caps"
        )
    if growths.names is not None and len(growths.names) != k:
        raise InvalidQuery(f"Expected {k} stat names, got {len(growths.names)}")

    names = growths.stat_names
    for i, (value, cap) in enumerate(zip(query.start, growths.caps)):
        if cap < 0:
            raise InvalidQuery(f"{names[i]}: cap {cap} is negative")
        if value < 0:
            raise InvalidQuery(f"{names[i]}: current value {value} is negative")
        if value > cap:
            raise InvalidQuery(f"{names[i]}: current value {value} exceeds cap {cap}")

    _check_rates(growths.rates, names)


def validate_promotion(promotion: Promotion, n_stats: int, levels_after: int = 0) -> None:
    """
    Check a promotion against the stat count of the query it follows.

    Raises:
        InvalidQuery: On length mismatches, negative gains or caps, rates
            outside [0, 1] or a negative level count after the promotion
    """
    if levels_after < 0:
        raise InvalidQuery(f"Levels after promotion must be >= 0, got {levels_after}")

    growths = promotion.growths
    if len(promotion.gains) != n_stats or len(growths.rates) != n_stats or len(growths.caps) != n_stats:
        raise InvalidQuery(
            f"Promotion mismatch: {n_stats} stats, {len(promotion.gains)} gains, "
            f"{len(growths.rates)} rates, {len(growths.caps)} caps"
        )
    if growths.names is not None and len(growths.names) != n_stats:
        raise InvalidQuery(f"Expected {n_stats} stat names, got {len(growths.names)}")

    names = growths.stat_names
    for i, (gain, cap) in enumerate(zip(promotion.gains, growths.caps)):
        if gain < 0:
            raise InvalidQuery(f"{names[i]}: promotion gain {gain} is negative")
        if cap < 0:
            raise InvalidQuery(f"{names[i]}: promoted cap {cap} is negative")

    _check_rates(growths.rates, names)


def _check_rates(rates, names) -> None:
    for i, rate in enumerate(rates):
        # NaN fails both comparisons
        if not (0.0 <= rate <= 1.0):
            raise InvalidQuery(f"{names[i]}: growth rate {rate} outside [0, 1]")


def check_cancelled(cancel: Optional[object], where: str = "") -> None:
    """Raise Cancelled if the caller's event-like token is set."""
    if cancel is not None and cancel.is_set():
        raise Cancelled(f"Cancelled{' ' + where if where else ''}")


def check_mass(masses: np.ndarray, tolerance: float) -> bool:
    """True if total mass is within tolerance of 1 and nothing is negative."""
    return bool(abs(float(masses.sum()) - 1.0) <= tolerance and (masses >= 0).all())
