"""
Pytest configuration and shared fixtures.

Fixtures build small growth queries whose exact distributions are easy
to write down by hand.
"""

import pytest

from growth_dist.types import EngineConfig, GrowthQuery, Growths


@pytest.fixture
def engine_config() -> EngineConfig:
    """Default engine config."""
    return EngineConfig()


@pytest.fixture
def coin_growths() -> Growths:
    """One stat, 50% growth, cap 3."""
    return Growths(rates=(0.5,), caps=(3,), names=("HP",))


@pytest.fixture
def coin_query(coin_growths) -> GrowthQuery:
    """One stat from 0, two level-ups: {0: 0.25, 1: 0.5, 2: 0.25}."""
    return GrowthQuery(start=(0,), growths=coin_growths, levels=2)


@pytest.fixture
def capped_coin_query() -> GrowthQuery:
    """One stat from 0 with cap 1, two level-ups: {0: 0.25, 1: 0.75}."""
    return GrowthQuery(start=(0,), growths=Growths(rates=(0.5,), caps=(1,)), levels=2)


@pytest.fixture
def two_stat_query() -> GrowthQuery:
    """Two stats with different caps, so support points cap at different levels."""
    return GrowthQuery(
        start=(0, 1),
        growths=Growths(rates=(0.6, 0.3), caps=(2, 10), names=("Str", "Spd")),
        levels=4
    )


@pytest.fixture
def three_stat_query() -> GrowthQuery:
    """Three uncapped stats at 50%: support doubles per stat and level."""
    return GrowthQuery(
        start=(2, 3, 4),
        growths=Growths(rates=(0.5, 0.5, 0.5), caps=(20, 20, 20)),
        levels=6
    )
