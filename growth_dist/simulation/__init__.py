"""Monte Carlo simulation engine."""

from .engine import simulate
from .rules import (
    LevelUpRule,
    IndependentGrowthRule,
    RetryOnBlankRule,
    AwardStatOnBlankRule,
    GuaranteedStatsRule,
    CorrelatedGrowthRule,
    build_rule,
)

__all__ = [
    "simulate",
    "LevelUpRule",
    "IndependentGrowthRule",
    "RetryOnBlankRule",
    "AwardStatOnBlankRule",
    "GuaranteedStatsRule",
    "CorrelatedGrowthRule",
    "build_rule",
]
