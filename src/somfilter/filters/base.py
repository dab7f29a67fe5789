"""Contract every artifact estimator satisfies.

An estimator turns one line of evidence on a record into the probability that
the record is an artifact. The engine only ever calls
:meth:`ArtifactEstimator.artifact_probability`, which withholds a signal (returns
0) when the record lacks the estimator's required annotations.

Lifecycle per pass: ``accumulate_data_for_learning`` on every record, then
``learn_parameters`` once, then ``clear_accumulated_data`` once. Learned state
changes only inside ``learn_parameters``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from ..models import VariantRecord
from ..utils import clamp

if TYPE_CHECKING:
    from ..state import RunState

TUMOR_LOD_KEY = "TLOD"
STRAND_BIAS_KEY = "SB"


class ArtifactEstimator(ABC):
    #: FILTER id written to the output record when this estimator flags it
    filter_name: str = ""
    description: str = ""
    #: technical = sequencing/mapping; non-technical = contamination, germline, clustering
    technical: bool = True
    #: INFO key for the Phred-scaled probability, if any
    annotation_name: Optional[str] = None
    annotation_description: str = ""
    #: INFO keys that must be present for a probability to be computed
    required_annotations: Tuple[str, ...] = ()

    def is_technical_artifact(self) -> bool:
        return self.technical

    def phred_scaled_posterior_annotation_name(self) -> Optional[str]:
        return self.annotation_name

    def has_required_annotations(self, record: VariantRecord) -> bool:
        return all(record.has_attribute(key) for key in self.required_annotations)

    def artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        if not self.has_required_annotations(record):
            return 0.0
        return clamp(float(self.calculate_artifact_probability(record, state)), 0.0, 1.0)

    @abstractmethod
    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        """Probability in [0, 1]; may raise MissingEvidenceError on absent evidence."""

    def accumulate_data_for_learning(self, record: VariantRecord, state: RunState) -> None:
        return None

    def learn_parameters(self) -> None:
        return None

    def clear_accumulated_data(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.filter_name!r})"


class HardFilter(ArtifactEstimator):
    """Estimator that is certain either way: probability 1 when the check fails."""

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        return 1.0 if self.is_artifact(record, state) else 0.0

    @abstractmethod
    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        ...


def best_alt_index(record: VariantRecord) -> int:
    """Index (among alts) of the allele with the highest tumor log odds; 0 without TLOD."""
    if not record.has_attribute(TUMOR_LOD_KEY):
        return 0
    lods = record.attribute_array(TUMOR_LOD_KEY)[: max(len(record.alts), 1)]
    return int(np.nanargmax(lods)) if np.any(~np.isnan(lods)) else 0


def summed_allele_depths(record: VariantRecord, state: RunState, *, normal: bool = False) -> np.ndarray:
    """AD summed over tumor (or normal) samples; zeros when no sample reports AD."""
    total = np.zeros(len(record.alts) + 1, dtype=np.int64)
    genotypes = state.normal_genotypes(record) if normal else state.tumor_genotypes(record)
    for g in genotypes:
        ad = g.allele_depths
        if ad is not None and len(ad) == len(total):
            total += ad
    return total


def summed_strand_counts(record: VariantRecord, state: RunState) -> Optional[np.ndarray]:
    """SB (ref fwd, ref rev, alt fwd, alt rev) summed over tumor samples, or None if absent."""
    total: Optional[np.ndarray] = None
    for g in state.tumor_genotypes(record):
        if not g.has(STRAND_BIAS_KEY):
            continue
        sb = g.int_array(STRAND_BIAS_KEY)
        if len(sb) != 4:
            continue
        total = sb if total is None else total + sb
    return total
