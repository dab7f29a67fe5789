from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from .filters.base import ArtifactEstimator


@dataclass(frozen=True)
class CombinedProbabilities:
    """Overall and per-class artifact probabilities for one record."""

    overall: float
    technical: float
    non_technical: float


def combine_probabilities(technical: float, non_technical: float) -> float:
    """Noisy-OR of a technical and a non-technical artifact probability."""
    return 1.0 - (1.0 - technical) * (1.0 - non_technical)


def combine_artifact_probabilities(
    probabilities: Mapping["ArtifactEstimator", float],
) -> CombinedProbabilities:
    """Combine per-estimator probabilities into one overall artifact probability.

    Within each class (technical vs. non-technical) only the largest probability
    counts, since estimators of the same class tend to measure the same failure
    mode. The two classes are then combined as independent failure paths.
    """
    technical = max(
        (p for est, p in probabilities.items() if est.is_technical_artifact()),
        default=0.0,
    )
    non_technical = max(
        (p for est, p in probabilities.items() if not est.is_technical_artifact()),
        default=0.0,
    )
    return CombinedProbabilities(
        overall=combine_probabilities(technical, non_technical),
        technical=technical,
        non_technical=non_technical,
    )
