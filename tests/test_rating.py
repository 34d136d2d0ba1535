"""Unit tests for the Bayesian rating aggregator."""

import pytest

from bookingcore.domain.rating import MIN_REVIEWS, PRIOR_MEAN, bayesian_rating, round10


class TestBayesianRating:
    def test_first_five_star_review(self):
        # round10((4.0 * 5 + 5) / (5 + 1)) = round10(25 / 6) = 4.2
        assert bayesian_rating(4.0, 0, 5) == (4.2, 1)

    def test_defaults(self):
        assert PRIOR_MEAN == 4.0
        assert MIN_REVIEWS == 5

    def test_identical_input_gives_identical_output(self):
        assert bayesian_rating(4.3, 12, 2) == bayesian_rating(4.3, 12, 2)

    def test_small_count_lands_between_prior_and_score(self):
        rating, _ = bayesian_rating(4.0, 1, 1)
        assert 1 < rating < 4.0

    def test_large_count_resists_outlier(self):
        rating, count = bayesian_rating(4.8, 1000, 1)
        assert count == 1001
        assert rating >= 4.7

    def test_large_count_approaches_raw_average(self):
        assert bayesian_rating(5.0, 10_000, 5) == (5.0, 10_001)
        assert bayesian_rating(2.0, 10_000, 2) == (2.0, 10_001)

    @pytest.mark.parametrize("score", [0, 6, -1])
    def test_score_out_of_range(self, score):
        with pytest.raises(ValueError):
            bayesian_rating(4.0, 0, score)

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            bayesian_rating(4.0, -1, 3)


class TestRound10:
    def test_rounds_half_up(self):
        assert round10(4.25) == 4.3
        assert round10(4.24) == 4.2

    def test_keeps_one_decimal(self):
        assert round10(25 / 6) == 4.2
