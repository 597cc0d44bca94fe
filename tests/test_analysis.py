"""
Tests for the shared statistical primitives.

These tests verify:
- Seeded generators are reproducible
- Rate shrinkage and Wilson intervals
- Beta posteriors and Gamma fits, including degenerate samples
- Quantile and percentile conventions
- Confidence aggregation and hedge wording
"""

import math

import pytest

from src.analysis import (
    aggregate_confidences,
    calculate_confidence_interval,
    compute_beta_posterior,
    fit_gamma_distribution,
    get_hedge_message,
    make_rng,
    median,
    percentile_index,
    probability_by_target,
    quantile_hf7,
    round_half_up,
    shrink_rate,
)


class TestRandomness:
    """Tests for make_rng."""

    def test_same_seed_same_draws(self):
        """Two generators from one seed produce the same stream."""
        a = make_rng("req-42")
        b = make_rng("req-42")
        assert list(a.random(5)) == list(b.random(5))

    def test_different_seeds_differ(self):
        assert list(make_rng("a").random(3)) != list(make_rng("b").random(3))


class TestRounding:

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.49, 2), (0.5, 1), (-0.5, 0), (7.0, 7)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestShrinkRate:
    """Tests for shrink_rate."""

    def test_no_observations_returns_prior(self):
        assert shrink_rate(10, 2, 0) == 2

    def test_equal_weight_is_midpoint(self):
        """n equal to the prior weight lands halfway."""
        assert shrink_rate(10, 2, 5, prior_weight=5) == pytest.approx(6.0)

    def test_large_n_approaches_observed(self):
        assert shrink_rate(10, 2, 1000) == pytest.approx(10, abs=0.1)


class TestConfidenceInterval:
    """Tests for the Wilson score interval."""

    def test_zero_trials_is_full_range(self):
        assert calculate_confidence_interval(0, 0) == (0.0, 1.0)

    def test_half_is_symmetric(self):
        lower, upper = calculate_confidence_interval(50, 100)
        assert lower == pytest.approx(1 - upper)
        assert lower < 0.5 < upper

    def test_bounds_clamped(self):
        lower, upper = calculate_confidence_interval(0, 10)
        assert lower == pytest.approx(0.0, abs=1e-12)
        assert 0.0 < upper < 1.0


class TestBetaPosterior:
    """Tests for compute_beta_posterior."""

    def test_parameters(self):
        posterior = compute_beta_posterior(8, 10, prior_strength=2)
        assert posterior.alpha == 10
        assert posterior.beta == 4
        assert posterior.mean == pytest.approx(10 / 14)
        assert posterior.n == 10

    def test_interval_contains_mean(self):
        posterior = compute_beta_posterior(8, 10)
        assert posterior.ci_lower < posterior.mean < posterior.ci_upper

    def test_no_data_is_prior(self):
        posterior = compute_beta_posterior(0, 0, prior_strength=2)
        assert posterior.mean == pytest.approx(0.5)
        assert posterior.n == 0


class TestGammaFit:
    """Tests for fit_gamma_distribution."""

    def test_empty_sample_default(self):
        fit = fit_gamma_distribution([])
        assert fit.shape == 1.0
        assert fit.rate == pytest.approx(1 / 7)
        assert fit.mean == 7.0
        assert fit.n == 0

    def test_method_of_moments(self):
        fit = fit_gamma_distribution([2, 4, 6, 8, 10])
        assert fit.mean == pytest.approx(6.0)
        assert fit.variance == pytest.approx(10.0)
        assert fit.shape == pytest.approx(3.6)
        assert fit.rate == pytest.approx(0.6)

    def test_constant_sample_gets_variance_floor(self):
        """All-equal durations still yield a finite, bounded shape."""
        fit = fit_gamma_distribution([7, 7, 7, 7, 7])
        assert fit.variance == pytest.approx(0.7)
        assert fit.shape == pytest.approx(70.0)
        assert fit.rate == 10.0
        assert fit.cv == pytest.approx(math.sqrt(0.7) / 7)


class TestQuantiles:
    """Tests for quantile_hf7 and percentile_index."""

    def test_hf7_interpolates(self):
        assert quantile_hf7([1, 2, 3, 4], 0.5) == pytest.approx(2.5)
        assert quantile_hf7([1, 2, 3, 4], 0.0) == 1
        assert quantile_hf7([1, 2, 3, 4], 1.0) == 4

    def test_hf7_small_samples(self):
        assert quantile_hf7([9], 0.9) == 9
        assert math.isnan(quantile_hf7([], 0.5))

    @pytest.mark.parametrize("p,n,expected", [(50, 10, 4), (90, 10, 8), (0, 5, 0), (100, 5, 4), (50, 1, 0)])
    def test_percentile_index(self, p, n, expected):
        assert percentile_index(p, n) == expected

    def test_probability_by_target(self):
        assert probability_by_target([1, 2, 3, 4], 2) == pytest.approx(0.5)
        assert probability_by_target([1, 2], None) is None
        assert probability_by_target([], 10) is None

    def test_median(self):
        assert median([]) is None
        assert median([1, 3, 2]) == 2.0


class TestConfidence:
    """Tests for confidence aggregation and hedging."""

    def test_weakest_wins(self):
        assert aggregate_confidences(["HIGH", "MED", "HIGH"]) == "MED"
        assert aggregate_confidences(["HIGH", "INSUFFICIENT"]) == "INSUFFICIENT"

    def test_empty_is_low(self):
        assert aggregate_confidences([]) == "LOW"
        assert aggregate_confidences(["bogus"]) == "LOW"

    def test_hedge_messages(self):
        assert get_hedge_message("HIGH") == "Based on observed patterns"
        assert get_hedge_message("MED") == "Based on similar cohorts"
        assert get_hedge_message("LOW") == "Estimated (limited data)"
        assert get_hedge_message("INSUFFICIENT") == "Estimated (limited data)"
