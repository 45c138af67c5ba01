"""
Tests for the single-level delta model and distribution algebra.
"""

import numpy as np
import pytest

from growth_dist.types import Distribution
from growth_dist.exact import algebra
from growth_dist.exact.algebra import aggregate, convolve, merge, normalize
from growth_dist.exact.delta import delta_size, level_delta


class TestLevelDelta:
    """Distribution of one level-up's increase vector."""

    def test_single_stat(self):
        assert level_delta((0.5,), (False,)).as_dict() == {(0,): 0.5, (1,): 0.5}

    def test_independent_product(self):
        delta = level_delta((0.3, 0.6), (False, False))
        assert delta.support_size == 4
        assert delta[(1, 1)] == pytest.approx(0.18)
        assert delta[(0, 0)] == pytest.approx(0.28)
        assert delta.total_mass == pytest.approx(1.0)

    def test_capped_stat_forced_to_zero(self):
        delta = level_delta((0.9, 0.5), (True, False))
        assert delta.as_dict() == {(0, 0): 0.5, (0, 1): 0.5}

    def test_certain_outcomes_drop_zero_mass(self):
        delta = level_delta((1.0, 0.0), (False, False))
        assert delta.as_dict() == {(1, 0): 1.0}

    def test_rows_in_lexicographic_order(self):
        delta = level_delta((0.5, 0.5, 0.5), (False, False, False))
        rows = [tuple(row) for row in delta.vectors]
        assert rows == sorted(rows)

    def test_no_stats(self):
        assert level_delta((), ()).as_dict() == {(): 1.0}

    def test_capped_roll_flag_does_not_change_distribution(self):
        consumed = level_delta((0.4, 0.7), (True, False), capped_rolls_consume_rng=True)
        skipped = level_delta((0.4, 0.7), (True, False), capped_rolls_consume_rng=False)
        assert consumed.as_dict() == skipped.as_dict()

    def test_delta_size(self):
        assert delta_size((False, True, False)) == 4
        assert delta_size(()) == 1


class TestConvolve:
    """convolve() adds increases and merges mass at the caps."""

    def test_mass_over_cap_merges_into_cap(self):
        start = Distribution.point((0,))
        step = level_delta((0.5,), (False,))
        one = convolve(start, step, caps=(1,))
        two = convolve(one, step, caps=(1,))
        assert two.as_dict() == pytest.approx({(0,): 0.25, (1,): 0.75})

    def test_mass_conserved(self):
        d1 = Distribution.from_dict({(0, 0): 0.2, (1, 2): 0.3, (2, 2): 0.5})
        d2 = level_delta((0.3, 0.8), (False, False))
        out = convolve(d1, d2, caps=(2, 2))
        assert out.total_mass == pytest.approx(1.0, abs=1e-12)
        assert (out.masses >= 0).all()
        assert (out.vectors <= 2).all()

    def test_commutative_in_level_order(self):
        start = Distribution.point((0, 0))
        a = level_delta((0.3, 0.9), (False, False))
        b = level_delta((0.7, 0.2), (False, False))
        ab = convolve(convolve(start, a, (5, 5)), b, (5, 5))
        ba = convolve(convolve(start, b, (5, 5)), a, (5, 5))
        assert ab.isclose(ba, tol=1e-12)

    def test_stat_count_mismatch(self):
        with pytest.raises(ValueError):
            convolve(Distribution.point((0,)), level_delta((0.5, 0.5), (False, False)), (3,))

    def test_cap_count_mismatch(self):
        with pytest.raises(ValueError):
            convolve(Distribution.point((0,)), level_delta((0.5,), (False,)), (3, 3))

    def test_sparse_and_chunked_paths_match_dense(self, monkeypatch):
        d1 = Distribution.from_dict({(0, 0): 0.1, (1, 0): 0.2, (1, 1): 0.3, (2, 2): 0.4})
        d2 = level_delta((0.5, 0.25), (False, False))
        dense = convolve(d1, d2, caps=(2, 3))

        monkeypatch.setattr(algebra, "DENSE_LIMIT", 0)
        monkeypatch.setattr(algebra, "PAIR_CHUNK", 3)
        sparse = convolve(d1, d2, caps=(2, 3))

        assert np.array_equal(dense.vectors, sparse.vectors)
        assert np.allclose(dense.masses, sparse.masses, atol=1e-15)

    def test_rows_in_lexicographic_order(self):
        d1 = Distribution.from_dict({(3, 0, 1): 0.5, (0, 4, 2): 0.5})
        out = convolve(d1, level_delta((0.5, 0.5, 0.5), (False,) * 3), caps=(9, 9, 9))
        rows = [tuple(row) for row in out.vectors]
        assert rows == sorted(rows)
        assert out.support_size == 16


class TestKeys:
    """Mixed-radix keys for stat vectors."""

    def test_encode_decode(self):
        vectors = np.array([[2, 5, 0], [4, 7, 1], [3, 5, 1]])
        lo = np.array([2, 5, 0])
        widths = np.array([3, 3, 2])
        keys = algebra.encode(vectors, lo, widths)
        assert keys.tolist() == [0, 2 * 6 + 2 * 2 + 1, 1 * 6 + 1]
        assert np.array_equal(algebra.decode(keys, lo, widths), vectors)

    def test_box_size_is_exact(self):
        assert algebra.box_size(np.array([1 << 40, 1 << 40])) == 1 << 80

    def test_accumulate_shifts(self):
        acc = np.zeros(6)
        algebra.accumulate_shifts(
            acc, np.array([0, 2]), np.array([0.25, 0.75]), np.array([0, 1]), np.array([0.5, 0.5])
        )
        assert acc.tolist() == [0.125, 0.125, 0.375, 0.375, 0.0, 0.0]

    def test_accumulate_shifts_in_chunks(self, monkeypatch):
        monkeypatch.setattr(algebra, "PAIR_CHUNK", 1)
        acc = np.zeros(4)
        algebra.accumulate_shifts(
            acc, np.array([0, 1, 1]), np.full(3, 1 / 3), np.array([0, 2]), np.array([0.5, 0.5])
        )
        assert acc == pytest.approx([1 / 6, 1 / 3, 1 / 6, 1 / 3])


class TestMergeAndNormalize:

    def test_aggregate_sums_duplicates(self):
        dist = aggregate(np.array([[1], [0], [1]]), np.array([0.25, 0.5, 0.25]))
        assert dist.as_dict() == {(0,): 0.5, (1,): 0.5}

    def test_merge(self):
        a = Distribution.from_dict({(0,): 0.25, (1,): 0.25})
        b = Distribution.from_dict({(1,): 0.25, (2,): 0.25})
        assert merge([a, b]).as_dict() == {(0,): 0.25, (1,): 0.5, (2,): 0.25}

    def test_merge_rejects_empty(self):
        with pytest.raises(ValueError):
            merge([])

    def test_normalize(self):
        dist = normalize(Distribution.from_dict({(0,): 0.2, (1,): 0.6}))
        assert dist[(0,)] == pytest.approx(0.25)
        assert dist.total_mass == pytest.approx(1.0)
