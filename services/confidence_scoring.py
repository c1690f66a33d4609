"""
Confidence scoring for payment outcome correlations and content patterns.

The score blends three signals into a value in [0, 1]:

- sample size of correlations sharing the content hash, on a log scale that
  saturates at 10 samples
- success rate (paid share) over that sample
- payment velocity: how quickly the payment followed the snapshot

Holding the success rate and velocity fixed, the score never decreases as
the sample grows, and an empty sample scores 0.0.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from scipy import stats

SAMPLE_WEIGHT = 0.4
SUCCESS_RATE_WEIGHT = 0.4
VELOCITY_WEIGHT = 0.2

# Sample size at which the sample component reaches 1.0
SAMPLE_SATURATION = 10

# (upper bound in hours, score) for time-to-payment velocity
VELOCITY_BANDS = (
    (0.5, 1.0),
    (2, 0.95),
    (6, 0.85),
    (24, 0.7),
    (72, 0.5),
    (168, 0.3),
)
SLOWEST_VELOCITY_SCORE = 0.1


@dataclass(frozen=True)
class ConfidenceWeights:
    sample: float = SAMPLE_WEIGHT
    success_rate: float = SUCCESS_RATE_WEIGHT
    velocity: float = VELOCITY_WEIGHT


def sample_size_component(sample_size: int) -> float:
    """log10(n + 1) / log10(11), capped at 1.0; 0.0 for an empty sample."""
    if sample_size <= 0:
        return 0.0
    return min(1.0, math.log10(sample_size + 1) / math.log10(SAMPLE_SATURATION + 1))


def velocity_score(time_to_payment_seconds: Optional[float]) -> float:
    """
    Score how quickly a payment followed the snapshot.

    Unknown or negative durations score 0.0.
    """
    if time_to_payment_seconds is None or time_to_payment_seconds < 0:
        return 0.0

    hours = time_to_payment_seconds / 3600.0
    for upper_bound, score in VELOCITY_BANDS:
        if hours <= upper_bound:
            return score
    return SLOWEST_VELOCITY_SCORE


def calculate_confidence(sample_size: int, success_count: int, velocity: float = 0.0,
                         weights: ConfidenceWeights = ConfidenceWeights()) -> float:
    """
    Combine sample size, success rate and velocity into a single score.

    Args:
        sample_size: Number of correlations in the pattern
        success_count: How many of them were paid
        velocity: Velocity score in [0, 1]
        weights: Component weights

    Returns:
        Score in [0, 1], rounded to 4 places; 0.0 when sample_size is 0
    """
    if sample_size <= 0:
        return 0.0

    success_rate = max(0.0, min(1.0, success_count / sample_size))
    velocity = max(0.0, min(1.0, velocity))

    score = (
        weights.sample * sample_size_component(sample_size)
        + weights.success_rate * success_rate
        + weights.velocity * velocity
    )
    return round(max(0.0, min(1.0, score)), 4)


def wilson_interval(successes: int, total: int, z: float = 1.96) -> Tuple[float, float]:
    """
    Wilson score interval for a conversion rate.

    Returns:
        (lower, upper); (0.0, 0.0) for an empty sample
    """
    if total <= 0:
        return 0.0, 0.0

    p = successes / total
    denominator = 1 + z * z / total
    centre = p + z * z / (2 * total)
    margin = z * math.sqrt((p * (1 - p) + z * z / (4 * total)) / total)
    lower = (centre - margin) / denominator
    upper = (centre + margin) / denominator
    return round(max(0.0, lower), 4), round(min(1.0, upper), 4)


def binomial_p_value(successes: int, total: int, baseline_rate: float) -> float:
    """
    Two-sided exact binomial p-value that the observed rate differs from a
    baseline.

    Returns 1.0 when the test is undefined (empty sample or degenerate baseline).
    """
    if total <= 0 or baseline_rate <= 0 or baseline_rate >= 1:
        return 1.0

    p_value = stats.binomtest(successes, total, baseline_rate).pvalue
    return round(min(1.0, float(p_value)), 4)
