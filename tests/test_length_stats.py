"""
Tests for Nxx and median computation.
"""

import numpy as np
import pytest

from length_stats import median_length, nxx, nxx_at


class TestNxx:
    """Tests for the single-pass percentile-of-cumulative-length scan."""

    def test_small_scenario(self):
        # total 20; cumulative from longest: 10, 15, 18, 20
        table = nxx([2, 3, 5, 10])
        assert table[80] == 3
        assert table[75] == 5
        assert table[50] == 10  # 10 >= 50% of 20 already at the longest
        assert table[20] == 10
        assert table[99] == 2

    def test_input_order_does_not_matter(self):
        assert nxx([10, 2, 5, 3]) == nxx([2, 3, 5, 10])

    def test_input_not_modified(self):
        lengths = [5, 1, 3]
        nxx(lengths)
        assert lengths == [5, 1, 3]

    def test_explicit_total(self):
        assert nxx([2, 3, 5, 10], total_length=20) == nxx([2, 3, 5, 10])

    def test_non_increasing_in_percentile(self):
        lengths = np.random.default_rng(3).integers(1, 10_000, size=500)
        table = nxx(lengths)
        values = table[1:]
        assert all(v is not None for v in values)
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_every_percentile_filled(self):
        table = nxx([7])
        assert table[0] is None
        assert table[1:] == [7] * 99

    def test_empty_is_undefined(self):
        table = nxx([])
        assert len(table) == 100
        assert all(v is None for v in table)

    def test_zero_length_records(self):
        assert nxx([0, 0])[50] == 0

    def test_nxx_at(self):
        assert nxx_at([2, 3, 5, 10], (20, 50, 80)) == {20: 10, 50: 10, 80: 3}

    def test_nxx_at_rejects_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            nxx_at([1, 2], (0,))
        with pytest.raises(ValueError, match="out of range"):
            nxx_at([1, 2], (100,))


class TestMedian:
    """Tests for the standard median definition."""

    def test_odd_count(self):
        assert median_length([5, 1, 3]) == 3

    def test_even_count_averages_middle_pair(self):
        assert median_length([1, 2, 3, 10]) == 2.5
        assert median_length([4, 2]) == 3

    def test_single(self):
        assert median_length([42]) == 42

    def test_empty_is_undefined(self):
        assert median_length([]) is None
