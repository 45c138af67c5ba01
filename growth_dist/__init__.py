"""
Growth distribution engine.

Exact and simulated probability distributions of a character's stats
after a number of level-ups, with per-stat growth rates and caps.
"""

from .types import (
    Stat,
    Growths,
    Character,
    GrowthQuery,
    Promotion,
    Distribution,
    SimulationResult,
    IntractableSignal,
    EngineConfig,
)
from .errors import GrowthEngineError, InvalidQuery, Intractable, Cancelled
from .cache import DistributionCache, cached_distribution, get_default_cache
from .pipeline import (
    compute_distribution,
    compute_promoted_distribution,
    simulate_distribution,
    compute_or_simulate,
)

__version__ = "0.1.0"

__all__ = [
    "Stat",
    "Growths",
    "Character",
    "GrowthQuery",
    "Promotion",
    "Distribution",
    "SimulationResult",
    "IntractableSignal",
    "EngineConfig",
    "GrowthEngineError",
    "InvalidQuery",
    "Intractable",
    "Cancelled",
    "DistributionCache",
    "cached_distribution",
    "get_default_cache",
    "compute_distribution",
    "compute_promoted_distribution",
    "simulate_distribution",
    "compute_or_simulate",
]
