"""Unit tests for the numeric helpers behind portfolio correlations."""

import pytest

from credit_portfolio.utils import statistics


class TestPearsonCorrelation:
    """Test the Pearson coefficient."""

    def test_perfect_positive(self) -> None:
        """Linearly increasing samples correlate at 1."""
        assert statistics.pearson_correlation([1, 2, 3, 4], [10, 20, 30, 40]) == pytest.approx(1.0)

    def test_perfect_negative(self) -> None:
        """Opposite trends correlate at -1."""
        assert statistics.pearson_correlation([1, 2, 3], [9, 6, 3]) == pytest.approx(-1.0)

    @pytest.mark.parametrize("slope", [3, -3])
    def test_stays_within_unit_interval(self, slope) -> None:
        """Fractional linear samples never drift past 1 in magnitude."""
        xs = [0.1 * i for i in range(1, 40)]
        ys = [slope * x + 7.3 for x in xs]

        r = statistics.pearson_correlation(xs, ys)

        assert -1.0 <= r <= 1.0
        assert abs(r) == pytest.approx(1.0)

    def test_zero_variance_returns_zero(self) -> None:
        """A constant sample has no defined correlation."""
        assert statistics.pearson_correlation([5, 5, 5], [1, 2, 3]) == 0.0

    def test_length_mismatch_returns_zero(self) -> None:
        assert statistics.pearson_correlation([1, 2], [1, 2, 3]) == 0.0

    def test_empty_returns_zero(self) -> None:
        assert statistics.pearson_correlation([], []) == 0.0


class TestPairedValues:
    """Test dropping incomplete pairs."""

    def test_drops_positions_with_missing_side(self) -> None:
        """A None on either side removes that position from both samples."""
        xs, ys = statistics.paired_values([80, None, 60, 40], [4, 3, None, 2])

        assert xs == [80.0, 40.0]
        assert ys == [4.0, 2.0]


class TestDescriptiveStatistics:
    """Test mean, variance, standard deviation and median."""

    def test_population_variance(self) -> None:
        """Variance divides by N, not N - 1."""
        assert statistics.variance([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(4.0)
        assert statistics.standard_deviation([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)

    def test_ignores_missing_values(self) -> None:
        assert statistics.mean([10, None, 20]) == pytest.approx(15.0)

    def test_median_of_even_sample(self) -> None:
        assert statistics.median([82, 28, 61, 70]) == pytest.approx(65.5)

    def test_empty_inputs_return_zero(self) -> None:
        """Empty samples produce zeros instead of NaN."""
        assert statistics.mean([]) == 0.0
        assert statistics.variance([]) == 0.0
        assert statistics.standard_deviation([]) == 0.0
        assert statistics.median([]) == 0.0
