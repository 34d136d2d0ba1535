"""
Bayesian (smoothed) rating aggregation.

    new_rating = round10( (PRIOR_MEAN x MIN_REVIEWS + rating x count + score)
                          / (MIN_REVIEWS + count + 1) )

A driver with one 5-star review shows 4.2, not 5.0; as ``count`` grows
the prior's weight shrinks and a single score barely moves the result.
``round10`` rounds half-up to one decimal place.
"""

from __future__ import annotations

import math

PRIOR_MEAN = 4.0
MIN_REVIEWS = 5


def round10(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def bayesian_rating(
    rating: float,
    rating_count: int,
    score: int,
    prior_mean: float = PRIOR_MEAN,
    min_reviews: int = MIN_REVIEWS,
) -> tuple[float, int]:
    """Fold *score* into ``(rating, rating_count)``; returns the new pair."""
    if not 1 <= score <= 5:
        raise ValueError(f"score must be between 1 and 5, got {score}")
    if rating_count < 0:
        raise ValueError("rating_count cannot be negative")

    total_sum = rating * rating_count + score
    total_count = rating_count + 1
    smoothed = (prior_mean * min_reviews + total_sum) / (min_reviews + total_count)
    return round10(smoothed), total_count
