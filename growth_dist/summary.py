"""
Summary statistics over growth distributions.

Pure reductions over a Distribution's support and masses. Exact and
empirical distributions are treated identically.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Sequence

from .types import Distribution

# Slack when comparing cumulative mass against a percentile
_CUMULATIVE_EPS = 1e-12


def mean(dist: Distribution) -> np.ndarray:
    """[k] expected value of each stat."""
    return dist.masses @ dist.vectors.astype(np.float64)


def variance(dist: Distribution) -> np.ndarray:
    """[k] variance of each stat."""
    mu = mean(dist)
    centered = dist.vectors.astype(np.float64) - mu[np.newaxis, :]
    return dist.masses @ (centered ** 2)


def marginal(dist: Distribution, stat: int) -> Dict[int, float]:
    """Distribution of a single stat, {value: probability} sorted by value."""
    values, inverse = np.unique(dist.vectors[:, stat], return_inverse=True)
    summed = np.zeros(len(values), dtype=np.float64)
    np.add.at(summed, inverse.reshape(-1), dist.masses)
    return {int(v): float(p) for v, p in zip(values, summed)}


def marginals(dist: Distribution) -> List[Dict[int, float]]:
    """Marginal distribution of every stat."""
    return [marginal(dist, i) for i in range(dist.n_stats)]


def probability_at_least(
    dist: Distribution,
    threshold: float,
    stat: Optional[int] = None,
    weights: Optional[Sequence[float]] = None
) -> float:
    """
    P(value >= threshold) for one stat or a linear combination of stats.

    Args:
        dist: Any distribution
        threshold: Inclusive lower bound
        stat: Stat index (ignored when weights are given)
        weights: [k] coefficients of a linear combination of stats
    """
    values = _project(dist, stat, weights)
    return float(dist.masses[values >= threshold].sum())


def percentile(
    dist: Distribution,
    pct: float,
    stat: Optional[int] = None,
    weights: Optional[Sequence[float]] = None
) -> float:
    """
    Smallest value whose cumulative probability reaches pct / 100.

    Args:
        dist: Any distribution
        pct: Percentile in [0, 100]
        stat: Stat index (ignored when weights are given)
        weights: [k] coefficients of a linear combination of stats
    """
    if not 0.0 <= pct <= 100.0:
        raise ValueError(f"Percentile must be in [0, 100], got {pct}")
    if dist.support_size == 0:
        raise ValueError("Percentile of an empty distribution")

    values = _project(dist, stat, weights)
    order = np.argsort(values, kind='stable')
    sorted_values = values[order]
    cumulative = np.cumsum(dist.masses[order])

    target = pct / 100.0
    idx = int(np.searchsorted(cumulative, target - _CUMULATIVE_EPS, side='left'))
    idx = min(idx, len(sorted_values) - 1)
    return float(sorted_values[idx])


def total_variation(d1: Distribution, d2: Distribution) -> float:
    """Total variation distance: half the L1 distance between masses."""
    if d1.n_stats != d2.n_stats:
        raise ValueError("Distributions are over different stat counts")
    p = d1.as_dict()
    q = d2.as_dict()
    keys = set(p) | set(q)
    return 0.5 * sum(abs(p.get(key, 0.0) - q.get(key, 0.0)) for key in keys)


def marginals_frame(dist: Distribution, names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Marginals as a table: one row per stat value, one column per stat.

    Missing values are filled with probability 0.
    """
    if names is None:
        names = [f"stat_{i}" for i in range(dist.n_stats)]
    if len(names) != dist.n_stats:
        raise ValueError(f"Expected {dist.n_stats} names, got {len(names)}")

    frame = pd.DataFrame({name: pd.Series(m) for name, m in zip(names, marginals(dist))})
    frame = frame.fillna(0.0).sort_index()
    frame.index.name = 'value'
    return frame


def summarize(
    dist: Distribution,
    names: Optional[Sequence[str]] = None,
    percentiles: Sequence[float] = (10, 50, 90)
) -> Dict[str, Dict[str, float]]:
    """Per-stat mean, standard deviation and percentiles."""
    if names is None:
        names = [f"stat_{i}" for i in range(dist.n_stats)]

    mu = mean(dist)
    sd = np.sqrt(variance(dist))

    summary = {}
    for i, name in enumerate(names):
        row = {'mean': float(mu[i]), 'std': float(sd[i])}
        for pct in percentiles:
            row[f"p{pct:g}"] = percentile(dist, pct, stat=i)
        summary[name] = row
    return summary


def _project(
    dist: Distribution,
    stat: Optional[int],
    weights: Optional[Sequence[float]]
) -> np.ndarray:
    """Scalar value of every support point."""
    if weights is not None:
        w = np.asarray(weights, dtype=np.float64)
        if w.shape != (dist.n_stats,):
            raise ValueError(f"Expected {dist.n_stats} weights, got shape {w.shape}")
        return dist.vectors.astype(np.float64) @ w
    if stat is None:
        raise ValueError("Pass a stat index or weights")
    if not 0 <= stat < dist.n_stats:
        raise IndexError(f"Stat index {stat} out of range for {dist.n_stats} stats")
    return dist.vectors[:, stat].astype(np.float64)
