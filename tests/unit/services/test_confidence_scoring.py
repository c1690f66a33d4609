"""
Tests for confidence scoring and pattern statistics
"""

import pytest

from services.confidence_scoring import (
    calculate_confidence, sample_size_component, velocity_score, wilson_interval, binomial_p_value
)


class TestCalculateConfidence:

    def test_empty_sample_scores_zero(self):
        assert calculate_confidence(0, 0) == 0.0
        assert calculate_confidence(0, 0, velocity=1.0) == 0.0

    def test_score_is_bounded(self):
        assert calculate_confidence(1000, 1000, velocity=1.0) == 1.0
        assert 0.0 <= calculate_confidence(1, 0) <= 1.0

    def test_never_decreases_as_sample_grows_with_fixed_rate(self):
        scores = [calculate_confidence(n, n, velocity=0.7) for n in range(1, 30)]
        assert scores == sorted(scores)

        half_rate = [calculate_confidence(2 * n, n, velocity=0.5) for n in range(1, 30)]
        assert half_rate == sorted(half_rate)

    def test_higher_success_rate_scores_higher(self):
        assert calculate_confidence(10, 9) > calculate_confidence(10, 3)

    def test_sample_component_saturates(self):
        assert sample_size_component(0) == 0.0
        assert sample_size_component(10) == pytest.approx(1.0)
        assert sample_size_component(500) == 1.0


class TestVelocityScore:

    @pytest.mark.parametrize('seconds,expected', [
        (60, 1.0),
        (3600, 0.95),
        (5 * 3600, 0.85),
        (20 * 3600, 0.7),
        (48 * 3600, 0.5),
        (100 * 3600, 0.3),
        (30 * 24 * 3600, 0.1),
    ])
    def test_bands(self, seconds, expected):
        assert velocity_score(seconds) == expected

    def test_unknown_or_negative_durations_score_zero(self):
        assert velocity_score(None) == 0.0
        assert velocity_score(-10) == 0.0


class TestPatternStatistics:

    def test_wilson_interval_contains_rate(self):
        lower, upper = wilson_interval(7, 10)
        assert lower < 0.7 < upper
        assert 0.0 <= lower and upper <= 1.0

    def test_wilson_interval_empty_sample(self):
        assert wilson_interval(0, 0) == (0.0, 0.0)

    def test_p_value_matches_baseline(self):
        assert binomial_p_value(50, 100, 0.5) == 1.0

    def test_p_value_small_for_large_deviation(self):
        assert binomial_p_value(90, 100, 0.5) < 0.001

    def test_p_value_is_the_exact_binomial_test(self):
        # P(X <= 3) + P(X >= 7) for X ~ Binomial(10, 0.5) = 352 / 1024
        assert binomial_p_value(7, 10, 0.5) == pytest.approx(0.34375, abs=1e-4)

    def test_p_value_undefined_cases(self):
        assert binomial_p_value(0, 0, 0.5) == 1.0
        assert binomial_p_value(3, 10, 0.0) == 1.0
        assert binomial_p_value(3, 10, 1.0) == 1.0
