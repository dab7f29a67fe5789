"""Decision-threshold calibration from a pass's artifact probabilities.

Both scan-based algorithms sort once and walk the list from the most confident
(lowest probability) record upward. They never fail on degenerate input: an
empty list, or one made only of 0s or 1s, yields a boundary threshold.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .config import ConfigurationError, FilteringConfig, ThresholdStrategy

logger = logging.getLogger(__name__)

# floating-point tolerance at exact threshold boundaries
EPSILON = 1.0e-10

THRESHOLD_FOR_FILTERING_NONE = 1.0
THRESHOLD_FOR_FILTERING_ALL = 0.0


def calculate_threshold_fdr(probabilities: Sequence[float], requested_fdr: float) -> float:
    """Largest threshold whose accepted set has expected FDR <= ``requested_fdr``.

    Each probability is read as that record's chance of being a false discovery
    if accepted. The running mean over an ascending prefix is non-decreasing, so
    the first prefix that exceeds the requested rate fixes the cutoff.
    """
    if requested_fdr < 0:
        raise ValueError("requested FDR must be non-negative")

    posteriors = np.sort(np.asarray(probabilities, dtype=float))
    cumulative_expected_fps = 0.0

    for i, posterior in enumerate(posteriors):
        expected_fdr = (cumulative_expected_fps + posterior) / (i + 1)
        if expected_fdr > requested_fdr + EPSILON:
            return float(posteriors[i - 1]) if i > 0 else THRESHOLD_FOR_FILTERING_ALL
        cumulative_expected_fps += posterior

    return THRESHOLD_FOR_FILTERING_NONE


def calculate_threshold_fscore(probabilities: Sequence[float], beta: float) -> float:
    """Threshold maximizing the expected F-beta score.

    ``beta`` weights recall relative to precision. Ties go to the larger
    accepted prefix.
    """
    if beta < 0:
        raise ValueError("F-score beta must be non-negative")

    posteriors = np.sort(np.asarray(probabilities, dtype=float))
    n = len(posteriors)
    beta_sq = beta * beta

    true_positives = 0.0
    false_positives = 0.0
    false_negatives = float(np.sum(1.0 - posteriors))

    # -1 means filter everything; recall is zero there so F starts at 0
    optimal_index_inclusive = -1
    optimal_f_score = 0.0

    for i, posterior in enumerate(posteriors):
        true_positives += 1.0 - posterior
        false_positives += posterior
        false_negatives -= 1.0 - posterior
        denom = (1.0 + beta_sq) * true_positives + beta_sq * false_negatives + false_positives
        f_score = (1.0 + beta_sq) * true_positives / denom if denom > 0 else 0.0
        if f_score >= optimal_f_score:
            optimal_index_inclusive = i
            optimal_f_score = f_score

    if optimal_index_inclusive == -1:
        return THRESHOLD_FOR_FILTERING_ALL
    if optimal_index_inclusive == n - 1:
        return THRESHOLD_FOR_FILTERING_NONE
    return float(posteriors[optimal_index_inclusive])


def select_threshold(config: FilteringConfig, probabilities: Sequence[float]) -> float:
    """Apply the configured thresholding strategy."""
    strategy = config.threshold_strategy
    if strategy is ThresholdStrategy.CONSTANT:
        return float(config.posterior_threshold)
    if strategy is ThresholdStrategy.FALSE_DISCOVERY_RATE:
        return calculate_threshold_fdr(probabilities, config.max_false_discovery_rate)
    if strategy is ThresholdStrategy.OPTIMAL_F_SCORE:
        return calculate_threshold_fscore(probabilities, config.f_score_beta)
    raise ConfigurationError(f"Invalid threshold strategy: {strategy!r}")
