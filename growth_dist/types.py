"""
Core data structures for the growth distribution engine.

Value types for stats, growth parameters, queries and distributions.
All of them are immutable once constructed; combining distributions
always produces a new Distribution.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Sequence, Tuple
import math

import numpy as np


# Stat vectors are plain int tuples so they hash and compare component-wise
StatVector = Tuple[int, ...]

# Default tolerance for total probability mass
MASS_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Stat:
    """
    A named attribute of a character.

    Attributes:
        name: Display name (e.g. 'HP', 'Str')
        current: Current value
        cap: Maximum value the stat may reach
    """
    name: str
    current: int
    cap: int


@dataclass(frozen=True)
class Growths:
    """
    Per-stat growth parameters, positionally aligned with a stat vector.

    Attributes:
        rates: Probability per level-up that each stat increases by one
        caps: Maximum value of each stat
        names: Optional stat names, used for display only (not part of
            equality, hashing or cache keys)
    """
    rates: Tuple[float, ...]
    caps: Tuple[int, ...]
    names: Optional[Tuple[str, ...]] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        # Normalize sequences to tuples so equal inputs hash equally
        object.__setattr__(self, 'rates', tuple(float(r) for r in self.rates))
        object.__setattr__(self, 'caps', tuple(int(c) for c in self.caps))
        if self.names is not None:
            object.__setattr__(self, 'names', tuple(str(n) for n in self.names))

    def __len__(self) -> int:
        return len(self.rates)

    @property
    def stat_names(self) -> Tuple[str, ...]:
        """Names for display, falling back to positional labels."""
        if self.names is not None:
            return self.names
        return tuple(f"stat_{i}" for i in range(len(self.rates)))

    def rates_array(self) -> np.ndarray:
        return np.array(self.rates, dtype=np.float64)

    def caps_array(self) -> np.ndarray:
        return np.array(self.caps, dtype=np.int64)


@dataclass(frozen=True)
class Character:
    """
    A character as entered by a front-end: stats plus aligned growth rates.

    Attributes:
        name: Character name
        stats: Current value and cap of each stat
        rates: Growth rate of each stat, in [0, 1]
    """
    name: str
    stats: Tuple[Stat, ...]
    rates: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, 'stats', tuple(self.stats))
        object.__setattr__(self, 'rates', tuple(float(r) for r in self.rates))

    @property
    def stat_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.stats)

    def query(self, levels: int) -> 'GrowthQuery':
        return GrowthQuery.from_stats(self.stats, self.rates, levels)


@dataclass(frozen=True)
class GrowthQuery:
    """
    Immutable input to the engine, also used verbatim as the cache key.

    Attributes:
        start: Starting stat vector
        growths: Growth rates and caps
        levels: Number of level-ups to apply (n >= 0)
    """
    start: StatVector
    growths: Growths
    levels: int

    def __post_init__(self) -> None:
        object.__setattr__(self, 'start', tuple(int(v) for v in self.start))
        object.__setattr__(self, 'levels', int(self.levels))

    @classmethod
    def from_stats(
        cls,
        stats: Sequence[Stat],
        rates: Sequence[float],
        levels: int
    ) -> 'GrowthQuery':
        """Build a query from Stat objects and aligned growth rates."""
        return cls(
            start=tuple(s.current for s in stats),
            growths=Growths(
                rates=tuple(rates),
                caps=tuple(s.cap for s in stats),
                names=tuple(s.name for s in stats)
            ),
            levels=levels
        )

    @property
    def n_stats(self) -> int:
        return len(self.start)

    def with_levels(self, levels: int) -> 'GrowthQuery':
        """Same start and growths, different level count."""
        return GrowthQuery(start=self.start, growths=self.growths, levels=levels)

    @property
    def lineage(self) -> Tuple[StatVector, Growths]:
        """Key shared by all queries that differ only in level count."""
        return (self.start, self.growths)


@dataclass(frozen=True)
class Promotion:
    """
    A class change between two runs of level-ups.

    Every stat gains a fixed amount, clipped at its new cap; later
    level-ups use the new rates and caps.

    Attributes:
        gains: Non-negative fixed increase of each stat
        growths: Rates and caps in effect after the promotion
    """
    gains: Tuple[int, ...]
    growths: Growths

    def __post_init__(self) -> None:
        object.__setattr__(self, 'gains', tuple(int(g) for g in self.gains))

    def gains_array(self) -> np.ndarray:
        return np.array(self.gains, dtype=np.int64)


class Distribution(Mapping):
    """
    Immutable probability distribution over stat vectors.

    Backed by a read-only [m, k] int64 support matrix and a [m] float64
    mass array, rows in lexicographic order. Behaves as a read-only
    Mapping from StatVector to probability.
    """

    __slots__ = ('_vectors', '_masses', '_index')

    def __init__(self, vectors: np.ndarray, masses: np.ndarray):
        vectors = np.array(vectors, dtype=np.int64, copy=True)
        masses = np.array(masses, dtype=np.float64, copy=True)
        if vectors.ndim != 2 or masses.ndim != 1 or len(vectors) != len(masses):
            raise ValueError(
                f"Shape mismatch: vectors {vectors.shape}, masses {masses.shape}"
            )
        vectors.setflags(write=False)
        masses.setflags(write=False)
        self._vectors = vectors
        self._masses = masses
        self._index: Optional[Dict[StatVector, int]] = None

    @classmethod
    def point(cls, vector: Sequence[int]) -> 'Distribution':
        """Point mass at a single vector."""
        return cls(
            np.array([tuple(vector)], dtype=np.int64).reshape(1, len(vector)),
            np.array([1.0])
        )

    @classmethod
    def from_dict(cls, masses: Dict[StatVector, float], n_stats: Optional[int] = None) -> 'Distribution':
        """Build from a {vector: mass} dict (rows are sorted)."""
        if not masses:
            k = n_stats or 0
            return cls(np.zeros((0, k), dtype=np.int64), np.zeros(0))
        keys = sorted(masses)
        k = len(keys[0])
        vectors = np.array(keys, dtype=np.int64).reshape(len(keys), k)
        return cls(vectors, np.array([masses[key] for key in keys], dtype=np.float64))

    # Mapping protocol

    def _lookup(self) -> Dict[StatVector, int]:
        if self._index is None:
            self._index = {
                tuple(int(v) for v in row): i for i, row in enumerate(self._vectors)
            }
        return self._index

    def __getitem__(self, vector: Sequence[int]) -> float:
        return float(self._masses[self._lookup()[tuple(vector)]])

    def __iter__(self) -> Iterator[StatVector]:
        return iter(self._lookup())

    def __len__(self) -> int:
        return len(self._masses)

    def __contains__(self, vector) -> bool:
        try:
            return tuple(vector) in self._lookup()
        except TypeError:
            return False

    def __repr__(self) -> str:
        return f"Distribution(support={len(self)}, n_stats={self.n_stats}, mass={self.total_mass:.12f})"

    # Array accessors

    @property
    def vectors(self) -> np.ndarray:
        """[m, k] read-only support matrix."""
        return self._vectors

    @property
    def masses(self) -> np.ndarray:
        """[m] read-only masses aligned with vectors."""
        return self._masses

    @property
    def n_stats(self) -> int:
        return self._vectors.shape[1]

    @property
    def support_size(self) -> int:
        return len(self._masses)

    @property
    def total_mass(self) -> float:
        return float(self._masses.sum())

    def as_dict(self) -> Dict[StatVector, float]:
        return {vector: float(self._masses[i]) for vector, i in self._lookup().items()}

    def isclose(self, other: 'Distribution', tol: float = MASS_TOLERANCE) -> bool:
        """Same support and masses within tol."""
        if self.n_stats != other.n_stats or len(self) != len(other):
            return False
        if not np.array_equal(self._vectors, other.vectors):
            return False
        return bool(np.all(np.abs(self._masses - other.masses) <= tol))


@dataclass(frozen=True)
class SimulationResult:
    """
    Empirical distribution from Monte-Carlo trials.

    Differs from an exact Distribution only by provenance metadata.

    Attributes:
        distribution: Empirical distribution (count / trials)
        trials: Number of independent trials
        seed: Seed of the SeedSequence the batches were spawned from
        rule: Name of the level-up rule that was sampled
        batch_size: Trials per batch (part of the reproducibility key)
    """
    distribution: Distribution
    trials: int
    seed: int
    rule: str
    batch_size: int

    @property
    def nominal_error(self) -> float:
        """Order of the Monte-Carlo sampling error, 1/sqrt(trials)."""
        return 1.0 / math.sqrt(self.trials)

    @property
    def standard_error(self) -> float:
        """Largest standard error of any single outcome probability."""
        p = self.distribution.masses
        if len(p) == 0:
            return 0.0
        return float(np.sqrt(p * (1.0 - p) / self.trials).max())

    def error_bound(self, confidence: float = 0.95) -> float:
        """Half-width of a normal-approximation interval on any outcome probability."""
        from scipy import stats

        if not 0.0 < confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {confidence}")
        z = float(stats.norm.ppf(0.5 + confidence / 2.0))
        # Fall back to the worst case p=0.5 so the bound never collapses to 0
        worst = 0.5 / math.sqrt(self.trials)
        return z * max(self.standard_error, worst)

    def metadata(self) -> Dict:
        """Serializable provenance and error description."""
        return {
            'trials': self.trials,
            'seed': self.seed,
            'rule': self.rule,
            'batch_size': self.batch_size,
            'support_size': self.distribution.support_size,
            'nominal_error': self.nominal_error,
            'standard_error': self.standard_error,
            'error_bound_95': self.error_bound(0.95),
        }


@dataclass(frozen=True)
class IntractableSignal:
    """
    Returned instead of a Distribution when exact computation is too large.

    The caller is expected to switch to simulation.
    """
    levels_completed: int
    support_size: int
    max_support: int

    def to_dict(self) -> Dict:
        return {
            'levels_completed': self.levels_completed,
            'support_size': self.support_size,
            'max_support': self.max_support,
        }


@dataclass
class EngineConfig:
    """
    Engine configuration.

    Attributes:
        max_support: Ceiling on distinct support points before a query is intractable
        renormalize_every: Rescale mass to 1 every this many levels (0 disables)
        mass_tolerance: Allowed deviation of total mass from 1
        capped_rolls_consume_rng: Whether a capped stat still makes its growth roll
        cache_capacity: LRU capacity of the cache (None = unbounded)
        cache_intermediate: Also cache every intermediate level on the way to n
        batch_size: Simulation trials per batch
        workers: Simulation threads
    """
    max_support: int = 1_000_000
    renormalize_every: int = 8
    mass_tolerance: float = MASS_TOLERANCE
    capped_rolls_consume_rng: bool = True
    cache_capacity: Optional[int] = None
    cache_intermediate: bool = False
    batch_size: int = 65_536
    workers: int = 1

    def __post_init__(self) -> None:
        if self.max_support <= 0:
            raise ValueError("EngineConfig.max_support must be positive.")
        if self.renormalize_every < 0:
            raise ValueError("EngineConfig.renormalize_every must be >= 0.")
        if self.mass_tolerance <= 0:
            raise ValueError("EngineConfig.mass_tolerance must be positive.")
        if self.cache_capacity is not None and self.cache_capacity <= 0:
            raise ValueError(
                "EngineConfig.cache_capacity must be positive or None for an unbounded cache."
            )
        if self.batch_size <= 0:
            raise ValueError("EngineConfig.batch_size must be positive.")
        if self.workers <= 0:
            raise ValueError("EngineConfig.workers must be positive.")

    def to_dict(self) -> Dict:
        return {
            'max_support': self.max_support,
            'renormalize_every': self.renormalize_every,
            'mass_tolerance': self.mass_tolerance,
            'capped_rolls_consume_rng': self.capped_rolls_consume_rng,
            'cache_capacity': self.cache_capacity,
            'cache_intermediate': self.cache_intermediate,
            'batch_size': self.batch_size,
            'workers': self.workers,
        }


def capped_mask(vectors: np.ndarray, caps: np.ndarray) -> np.ndarray:
    """[m, k] bool mask of stats at cap, per support row."""
    return vectors >= caps[np.newaxis, :]

