"""
Level-up rules for the Monte-Carlo simulator.

A rule turns a batch of current stat vectors into sampled increase
vectors for one level-up. New game mechanics are new LevelUpRule
subclasses; the simulator driver never changes.

Rules always draw a full [batch, k] block of uniforms per roll so the
random stream consumed per batch does not depend on which stats are
capped. capped_rolls_consume_rng instead decides whether a capped stat
takes part in its roll: when True, a hit on a capped stat counts as a
hit for blank-level detection even though the value cannot change.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Tuple, Type
import logging

import numpy as np
from scipy.stats import norm

logger = logging.getLogger(__name__)


class LevelUpRule(ABC):
    """
    Samples one level-up for a batch of trials.

    Attributes:
        name: Short identifier recorded in SimulationResult.rule
        capped_rolls_consume_rng: Whether capped stats still roll
    """
    name = "rule"

    def __init__(self, capped_rolls_consume_rng: bool = True):
        self.capped_rolls_consume_rng = capped_rolls_consume_rng

    @abstractmethod
    def sample(
        self,
        stats: np.ndarray,
        rates: np.ndarray,
        caps: np.ndarray,
        rng: np.random.Generator
    ) -> np.ndarray:
        """
        Sample increase vectors.

        Args:
            stats: [batch, k] int64 current stat vectors
            rates: [k] growth rates
            caps: [k] caps
            rng: Generator owned by the current batch

        Returns:
            [batch, k] int64 increases (0 or 1; never 1 on a capped stat)
        """

    def describe(self) -> str:
        return self.name

    def _roll(
        self,
        stats: np.ndarray,
        rates: np.ndarray,
        caps: np.ndarray,
        rng: np.random.Generator
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Independent growth rolls for every stat.

        Returns:
            counted: [batch, k] bool hits that count as "not blank"
            grown: [batch, k] bool hits that actually raise the stat
        """
        u = rng.random(stats.shape)
        return self._resolve(u < rates[np.newaxis, :], stats, caps)

    def _resolve(
        self,
        hits: np.ndarray,
        stats: np.ndarray,
        caps: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        capped = stats >= caps[np.newaxis, :]
        grown = hits & ~capped
        counted = hits if self.capped_rolls_consume_rng else grown
        return counted, grown


class IndependentGrowthRule(LevelUpRule):
    """Each stat grows independently with its growth rate."""
    name = "independent"

    def sample(self, stats, rates, caps, rng):
        _, grown = self._roll(stats, rates, caps, rng)
        return grown.astype(np.int64)


class RetryOnBlankRule(LevelUpRule):
    """
    Reroll blank level-ups (GBA semantics).

    A level-up with no hit is rerolled up to `retries` times; the last
    attempt is kept whatever it is. With capped_rolls_consume_rng, a hit
    on a capped stat is not blank and no reroll happens.
    """
    name = "retry_on_blank"

    def __init__(self, retries: int = 2, capped_rolls_consume_rng: bool = True):
        super().__init__(capped_rolls_consume_rng)
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        self.retries = retries

    def describe(self) -> str:
        return f"{self.name}({self.retries})"

    def sample(self, stats, rates, caps, rng):
        increases = np.zeros(stats.shape, dtype=np.int64)
        pending = np.arange(len(stats))

        for attempt in range(self.retries + 1):
            if len(pending) == 0:
                break
            counted, grown = self._roll(stats[pending], rates, caps, rng)
            increases[pending] = grown
            blank = ~counted.any(axis=1)
            pending = pending[blank]

        return increases


class AwardStatOnBlankRule(LevelUpRule):
    """
    Award a fixed stat on a blank level-up (SoV semantics).

    If no roll hits, the named stat gains one point unless it is capped.
    With capped_rolls_consume_rng, a hit on a capped stat prevents the award.
    """
    name = "award_on_blank"

    def __init__(self, stat: int, capped_rolls_consume_rng: bool = True):
        super().__init__(capped_rolls_consume_rng)
        if stat < 0:
            raise ValueError(f"stat index must be >= 0, got {stat}")
        self.stat = stat

    def describe(self) -> str:
        return f"{self.name}({self.stat})"

    def sample(self, stats, rates, caps, rng):
        if self.stat >= stats.shape[1]:
            raise ValueError(f"stat index {self.stat} out of range for {stats.shape[1]} stats")

        counted, grown = self._roll(stats, rates, caps, rng)
        blank = ~counted.any(axis=1)
        award = blank & (stats[:, self.stat] < caps[self.stat])
        grown[award, self.stat] = True
        return grown.astype(np.int64)


class GuaranteedStatsRule(LevelUpRule):
    """
    Keep rolling until a minimum number of stats grew (FE10 BEXP semantics).

    Stats are rolled in cyclic `order`; a stat that already grew this level
    or is capped is skipped. Rolling stops once `minimum` stats grew or no
    uncapped stat with a positive rate is left to grow.
    """
    name = "guaranteed_stats"

    def __init__(
        self,
        minimum: int,
        order: Optional[Sequence[int]] = None,
        max_passes: int = 64,
        capped_rolls_consume_rng: bool = True
    ):
        super().__init__(capped_rolls_consume_rng)
        if minimum < 0:
            raise ValueError(f"minimum must be >= 0, got {minimum}")
        if max_passes <= 0:
            raise ValueError(f"max_passes must be positive, got {max_passes}")
        self.minimum = minimum
        self.order = list(order) if order is not None else None
        self.max_passes = max_passes

    def describe(self) -> str:
        return f"{self.name}({self.minimum})"

    def sample(self, stats, rates, caps, rng):
        n, k = stats.shape
        order = self.order if self.order is not None else list(range(k))
        if any(i < 0 or i >= k for i in order):
            raise ValueError(f"order {order} out of range for {k} stats")

        capped = stats >= caps[np.newaxis, :]
        growable = ~capped & (rates[np.newaxis, :] > 0)
        grown = np.zeros((n, k), dtype=bool)

        def still_active():
            count = grown.sum(axis=1)
            left = (growable & ~grown).any(axis=1)
            return (count < self.minimum) & left

        active = still_active()
        for _ in range(self.max_passes):
            if not active.any():
                break
            for i in order:
                u = rng.random(n)
                hit = active & ~grown[:, i] & growable[:, i] & (u < rates[i])
                grown[:, i] |= hit
                active = still_active()
        else:
            if active.any():
                logger.warning(
                    "GuaranteedStatsRule hit max_passes=%d with %d trials short of %d stats",
                    self.max_passes, int(active.sum()), self.minimum
                )

        return grown.astype(np.int64)


class CorrelatedGrowthRule(LevelUpRule):
    """
    Correlated growth rolls via a Gaussian copula.

    Marginal growth rates are preserved; the correlation matrix couples
    which stats hit together on the same level-up.
    """
    name = "correlated"

    def __init__(self, correlation: np.ndarray, capped_rolls_consume_rng: bool = True):
        super().__init__(capped_rolls_consume_rng)
        self.correlation = ensure_valid_correlation_matrix(
            np.array(correlation, dtype=np.float64)
        )

    def sample(self, stats, rates, caps, rng):
        n, k = stats.shape
        if self.correlation.shape != (k, k):
            raise ValueError(
                f"Correlation matrix shape {self.correlation.shape} does not match {k} stats"
            )
        if k == 0:
            return np.zeros((n, 0), dtype=np.int64)

        z = rng.multivariate_normal(np.zeros(k), self.correlation, size=n)  # [n, k]

        # Transform to uniform via CDF
        u = norm.cdf(z)

        _, grown = self._resolve(u < rates[np.newaxis, :], stats, caps)
        return grown.astype(np.int64)


def ensure_valid_correlation_matrix(corr: np.ndarray) -> np.ndarray:
    """
    Ensure correlation matrix is valid (positive semi-definite).

    If not, apply nearest correlation matrix correction.
    """
    if corr.ndim != 2 or corr.shape[0] != corr.shape[1]:
        raise ValueError(f"Correlation matrix must be square, got shape {corr.shape}")
    if corr.shape[0] == 0:
        return corr

    corr = corr.copy()

    # Check if symmetric
    if not np.allclose(corr, corr.T):
        corr = (corr + corr.T) / 2

    # Check diagonal is 1
    np.fill_diagonal(corr, 1.0)

    # Check positive semi-definite
    eigenvalues = np.linalg.eigvalsh(corr)
    if np.min(eigenvalues) < -1e-10:
        logger.warning("Correlation matrix not PSD, applying correction")
        corr = nearest_correlation_matrix(corr)

    return corr


def nearest_correlation_matrix(
    corr: np.ndarray,
    max_iter: int = 100,
    tol: float = 1e-8
) -> np.ndarray:
    """
    Find nearest valid correlation matrix (Higham's alternating projections).

    Alternates between the PSD cone and the unit-diagonal matrices with
    Dykstra's correction on the PSD step. Stops when successive iterates
    differ by less than tol (relative Frobenius norm).
    """
    Y = corr.copy()
    correction = np.zeros_like(corr)

    for iteration in range(1, max_iter + 1):
        R = Y - correction
        X = _psd_projection(R)
        correction = X - R

        Y_next = X.copy()
        np.fill_diagonal(Y_next, 1.0)

        change = np.linalg.norm(Y_next - Y) / max(1.0, np.linalg.norm(Y))
        Y = Y_next
        if change < tol:
            logger.debug(f"Nearest correlation matrix converged after {iteration} iterations")
            break
    else:
        logger.warning(f"Nearest correlation matrix did not converge in {max_iter} iterations")

    # Clip the last rounding-level negative eigenvalues and rescale to a unit diagonal
    X = _psd_projection(Y)
    scale = np.sqrt(np.maximum(np.diag(X), 1e-12))
    return X / np.outer(scale, scale)


def _psd_projection(matrix: np.ndarray) -> np.ndarray:
    eigenvalues, eigenvectors = np.linalg.eigh(matrix)
    return (eigenvectors * np.maximum(eigenvalues, 0.0)) @ eigenvectors.T


RULES: Dict[str, Type[LevelUpRule]] = {
    IndependentGrowthRule.name: IndependentGrowthRule,
    RetryOnBlankRule.name: RetryOnBlankRule,
    AwardStatOnBlankRule.name: AwardStatOnBlankRule,
    GuaranteedStatsRule.name: GuaranteedStatsRule,
    CorrelatedGrowthRule.name: CorrelatedGrowthRule,
}


def build_rule(name: str, **kwargs) -> LevelUpRule:
    """
    Instantiate a rule by name.

    Raises:
        ValueError: If the rule name is not recognized
    """
    if name not in RULES:
        raise ValueError(f"Unknown rule '{name}'. Available: {', '.join(RULES)}")
    return RULES[name](**kwargs)
