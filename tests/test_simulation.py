"""
Tests for the Monte-Carlo fallback simulator.
"""

import threading

import pytest

from growth_dist.types import EngineConfig, GrowthQuery, Growths, Promotion
from growth_dist.errors import Cancelled, InvalidQuery
from growth_dist.exact.engine import compute_exact
from growth_dist.simulation import simulate
from growth_dist.simulation.engine import _split_trials
from growth_dist.simulation.rules import IndependentGrowthRule
from growth_dist.summary import total_variation



class _CancellingRule(IndependentGrowthRule):
    """Independent rolls that set the cancel token as soon as a batch runs."""

    def __init__(self, cancel):
        super().__init__()
        self.cancel = cancel

    def sample(self, stats, rates, caps, rng):
        self.cancel.set()
        return super().sample(stats, rates, caps, rng)


class TestDeterminism:
    """Same seed and trial count give the same distribution."""

    def test_same_seed_same_result(self, three_stat_query):
        a = simulate(three_stat_query, trials=5_000, seed=7)
        b = simulate(three_stat_query, trials=5_000, seed=7)
        assert a.distribution.as_dict() == b.distribution.as_dict()

    def test_different_seed_differs(self, three_stat_query):
        a = simulate(three_stat_query, trials=5_000, seed=7)
        b = simulate(three_stat_query, trials=5_000, seed=8)
        assert a.distribution.as_dict() != b.distribution.as_dict()

    def test_worker_count_does_not_matter(self, three_stat_query):
        serial = simulate(
            three_stat_query, trials=10_000, seed=3,
            config=EngineConfig(batch_size=1_000, workers=1)
        )
        threaded = simulate(
            three_stat_query, trials=10_000, seed=3,
            config=EngineConfig(batch_size=1_000, workers=4)
        )
        assert serial.distribution.as_dict() == threaded.distribution.as_dict()

    def test_split_trials(self):
        assert _split_trials(10, 4) == [4, 4, 2]
        assert _split_trials(8, 4) == [4, 4]
        assert _split_trials(3, 4) == [3]


class TestSimulatedDistribution:

    def test_mass_sums_to_one(self, two_stat_query):
        result = simulate(two_stat_query, trials=3_001, seed=0)
        assert abs(result.distribution.total_mass - 1.0) <= 1e-9

    def test_zero_rates_point_mass(self):
        query = GrowthQuery(start=(2, 5), growths=Growths((0.0, 0.0), (9, 9)), levels=6)
        assert simulate(query, trials=100, seed=1).distribution.as_dict() == {(2, 5): 1.0}

    def test_certain_growth(self):
        query = GrowthQuery(start=(2, 5), growths=Growths((1.0, 1.0), (4, 20)), levels=6)
        assert simulate(query, trials=100, seed=1).distribution.as_dict() == {(4, 11): 1.0}

    def test_no_stats(self):
        query = GrowthQuery(start=(), growths=Growths((), ()), levels=3)
        assert simulate(query, trials=10, seed=0).distribution.as_dict() == {(): 1.0}

    def test_metadata(self, coin_query):
        result = simulate(coin_query, trials=10_000, seed=5)
        assert result.trials == 10_000
        assert result.seed == 5
        assert result.rule == "independent"
        assert result.nominal_error == pytest.approx(0.01)
        assert 0 < result.error_bound() < 0.02

    def test_converges_to_exact(self):
        query = GrowthQuery(start=(0, 2), growths=Growths((0.5, 0.3), (3, 10)), levels=4)
        exact = compute_exact(query)
        distances = [
            total_variation(exact, simulate(query, trials=n, seed=11).distribution)
            for n in (100, 10_000, 1_000_000)
        ]
        assert distances[0] > distances[1] > distances[2]
        assert distances[2] < 0.01


class TestSimulationErrors:

    def test_invalid_trials(self, coin_query):
        with pytest.raises(InvalidQuery):
            simulate(coin_query, trials=0, seed=1)

    def test_negative_seed(self, coin_query):
        with pytest.raises(InvalidQuery):
            simulate(coin_query, trials=10, seed=-1)

    def test_invalid_query(self, coin_growths):
        with pytest.raises(InvalidQuery):
            simulate(GrowthQuery(start=(7,), growths=coin_growths, levels=1), trials=10, seed=1)

    @pytest.mark.parametrize("workers", [1, 3])
    def test_cancelled(self, coin_query, workers):
        cancel = threading.Event()
        cancel.set()
        config = EngineConfig(batch_size=10, workers=workers)
        with pytest.raises(Cancelled):
            simulate(coin_query, trials=100, seed=1, config=config, cancel=cancel)

    @pytest.mark.parametrize("workers", [1, 3])
    def test_cancelled_during_first_batch(self, coin_query, workers):
        cancel = threading.Event()
        config = EngineConfig(batch_size=10, workers=workers)
        with pytest.raises(Cancelled, match="before batch"):
            simulate(
                coin_query, trials=100, seed=1, rule=_CancellingRule(cancel),
                config=config, cancel=cancel
            )


class TestPromotionStep:
    """A promotion between two runs of simulated level-ups."""

    def test_gains_clip_at_new_caps(self):
        query = GrowthQuery(start=(0, 5), growths=Growths((0.0, 0.0), (5, 5)), levels=3)
        promotion = Promotion(gains=(2, 3), growths=Growths((0.0, 0.0), (6, 7)))
        result = simulate(query, trials=50, seed=0, promotion=promotion)
        assert result.distribution.as_dict() == {(2, 7): 1.0}

    def test_new_growths_after_promotion(self):
        query = GrowthQuery(start=(0,), growths=Growths((0.0,), (1,)), levels=4)
        promotion = Promotion(gains=(1,), growths=Growths((1.0,), (4,)))
        result = simulate(query, trials=50, seed=0, promotion=promotion, levels_after=5)
        assert result.distribution.as_dict() == {(4,): 1.0}

    def test_reproducible_across_workers(self, two_stat_query):
        promotion = Promotion(gains=(1, 1), growths=Growths((0.5, 0.5), (4, 12)))
        runs = [
            simulate(
                two_stat_query, trials=4_000, seed=6, promotion=promotion, levels_after=3,
                config=EngineConfig(batch_size=500, workers=workers)
            ).distribution.as_dict()
            for workers in (1, 4)
        ]
        assert runs[0] == runs[1]

    def test_invalid_promotion(self, coin_query):
        promotion = Promotion(gains=(1, 0), growths=Growths((0.5, 0.5), (3, 3)))
        with pytest.raises(InvalidQuery):
            simulate(coin_query, trials=10, seed=0, promotion=promotion)
