"""
Tests for core value types and query validation.
"""

import numpy as np
import pytest

from growth_dist.types import (
    Distribution, EngineConfig, GrowthQuery, Growths, SimulationResult, Stat
)
from growth_dist.errors import InvalidQuery, validate_query


class TestDistribution:
    """Distribution behaves as an immutable mapping."""

    def test_point_mass(self):
        dist = Distribution.point((3, 4))
        assert dict(dist) == {(3, 4): 1.0}
        assert dist.n_stats == 2
        assert (3, 4) in dist
        assert (4, 3) not in dist

    def test_from_dict_sorts_rows(self):
        dist = Distribution.from_dict({(2, 0): 0.5, (0, 1): 0.25, (1, 1): 0.25})
        assert [tuple(row) for row in dist.vectors] == [(0, 1), (1, 1), (2, 0)]
        assert dist[(2, 0)] == 0.5

    def test_arrays_are_read_only(self):
        dist = Distribution.from_dict({(0,): 0.5, (1,): 0.5})
        with pytest.raises(ValueError):
            dist.masses[0] = 1.0
        with pytest.raises(ValueError):
            dist.vectors[0, 0] = 7

    def test_constructor_copies_input(self):
        masses = np.array([0.5, 0.5])
        dist = Distribution(np.array([[0], [1]]), masses)
        masses[0] = 0.9
        assert dist[(0,)] == 0.5

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            Distribution(np.array([[0], [1]]), np.array([1.0]))

    def test_zero_stat_distribution(self):
        dist = Distribution.point(())
        assert dist.n_stats == 0
        assert dist.as_dict() == {(): 1.0}

    def test_isclose(self):
        a = Distribution.from_dict({(0,): 0.5, (1,): 0.5})
        b = Distribution.from_dict({(0,): 0.5 + 1e-12, (1,): 0.5 - 1e-12})
        c = Distribution.from_dict({(0,): 0.4, (1,): 0.6})
        assert a.isclose(b)
        assert not a.isclose(c)
        assert not a.isclose(Distribution.point((0,)))


class TestQueryKeys:
    """Structurally equal queries hash equally (they are cache keys)."""

    def test_lists_and_tuples_are_equal_keys(self):
        q1 = GrowthQuery(start=[1, 2], growths=Growths([0.5, 0.25], [3, 4]), levels=2)
        q2 = GrowthQuery(start=(1, 2), growths=Growths((0.5, 0.25), (3, 4)), levels=2)
        assert q1 == q2
        assert hash(q1) == hash(q2)

    def test_stat_names_are_not_part_of_the_key(self):
        named = GrowthQuery(start=(1, 2), growths=Growths((0.5, 0.25), (3, 4), ("HP", "Str")), levels=2)
        plain = GrowthQuery(start=(1, 2), growths=Growths((0.5, 0.25), (3, 4)), levels=2)
        assert named == plain
        assert hash(named) == hash(plain)
        assert named.lineage == plain.lineage
        assert named.growths.stat_names == ("HP", "Str")

    def test_lineage_ignores_levels(self, coin_query):
        assert coin_query.with_levels(7).lineage == coin_query.lineage
        assert coin_query.with_levels(7) != coin_query

    def test_from_stats(self):
        stats = [Stat("HP", 20, 60), Stat("Str", 5, 20)]
        query = GrowthQuery.from_stats(stats, [0.8, 0.4], 3)
        assert query.start == (20, 5)
        assert query.growths.caps == (60, 20)
        assert query.growths.stat_names == ("HP", "Str")

    def test_default_stat_names(self):
        assert Growths((0.5, 0.5), (1, 1)).stat_names == ("stat_0", "stat_1")


class TestValidateQuery:
    """Malformed queries are rejected before any computation."""

    def test_valid_query_passes(self, two_stat_query):
        validate_query(two_stat_query)

    def test_negative_levels(self, coin_growths):
        with pytest.raises(InvalidQuery, match="Level count"):
            validate_query(GrowthQuery(start=(0,), growths=coin_growths, levels=-1))

    def test_stat_above_cap(self, coin_growths):
        with pytest.raises(InvalidQuery, match="exceeds cap"):
            validate_query(GrowthQuery(start=(4,), growths=coin_growths, levels=1))

    def test_negative_stat(self, coin_growths):
        with pytest.raises(InvalidQuery):
            validate_query(GrowthQuery(start=(-1,), growths=coin_growths, levels=1))

    @pytest.mark.parametrize("rate", [-0.1, 1.5, float("nan")])
    def test_rate_out_of_range(self, rate):
        growths = Growths(rates=(rate,), caps=(5,))
        with pytest.raises(InvalidQuery, match="growth rate"):
            validate_query(GrowthQuery(start=(0,), growths=growths, levels=1))

    def test_length_mismatch(self):
        growths = Growths(rates=(0.5, 0.5), caps=(5,))
        with pytest.raises(InvalidQuery, match="mismatch"):
            validate_query(GrowthQuery(start=(0,), growths=growths, levels=1))

    def test_invalid_query_is_value_error(self, coin_growths):
        with pytest.raises(ValueError):
            validate_query(GrowthQuery(start=(9,), growths=coin_growths, levels=1))


class TestEngineConfig:
    """EngineConfig validates its fields."""

    @pytest.mark.parametrize("field_name, value", [
        ("max_support", 0),
        ("renormalize_every", -1),
        ("mass_tolerance", 0.0),
        ("cache_capacity", 0),
        ("batch_size", 0),
        ("workers", 0),
    ])
    def test_invalid_values(self, field_name, value):
        with pytest.raises(ValueError):
            EngineConfig(**{field_name: value})

    def test_to_dict_round_trips(self):
        config = EngineConfig(max_support=500, workers=3, cache_capacity=16)
        assert EngineConfig(**config.to_dict()) == config


class TestSimulationResult:
    """Monte-Carlo error metadata."""

    def test_error_metadata(self):
        dist = Distribution.from_dict({(0,): 0.5, (1,): 0.5})
        result = SimulationResult(dist, trials=10_000, seed=1, rule="independent", batch_size=100)

        assert result.nominal_error == pytest.approx(0.01)
        assert result.standard_error == pytest.approx(0.005)
        assert result.error_bound(0.95) == pytest.approx(1.959964 * 0.005, rel=1e-5)

        meta = result.metadata()
        assert meta['trials'] == 10_000
        assert meta['seed'] == 1
        assert meta['support_size'] == 2
        assert meta['error_bound_95'] == pytest.approx(result.error_bound(0.95))

    def test_error_bound_never_zero(self):
        result = SimulationResult(
            Distribution.point((3,)), trials=100, seed=0, rule="independent", batch_size=100
        )
        assert result.standard_error == 0.0
        assert result.error_bound() > 0.0

    def test_invalid_confidence(self):
        result = SimulationResult(
            Distribution.point((3,)), trials=100, seed=0, rule="independent", batch_size=100
        )
        with pytest.raises(ValueError):
            result.error_bound(1.0)
