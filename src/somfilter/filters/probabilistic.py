"""Estimators that return graded posterior probabilities of an artifact."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import numpy as np

from ..models import VariantRecord
from ..state import RunState
from ..utils import binomial_probability, clamp, posterior_probability_of_error, weighted_median
from .base import TUMOR_LOD_KEY, ArtifactEstimator, best_alt_index, summed_allele_depths, summed_strand_counts

logger = logging.getLogger(__name__)

POPULATION_AF_KEY = "POPAF"
ALLELE_FRACTION_KEY = "AF"

# error rate for "all alt reads on one strand" under a strand artifact
_STRAND_ARTIFACT_ERROR = 0.01
# rate at which a somatic call shows alt reads in the matched normal
_NORMAL_SOMATIC_ERROR = 1.0e-3


def _population_allele_frequency(record: VariantRecord, alt_index: int) -> float:
    """POPAF holds -log10 population allele frequencies per alt."""
    neg_log10 = record.attribute_array(POPULATION_AF_KEY)
    if alt_index >= len(neg_log10) or np.isnan(neg_log10[alt_index]):
        return 0.0
    return float(10.0 ** (-neg_log10[alt_index]))


class TumorEvidenceFilter(ArtifactEstimator):
    """Posterior that the tumor evidence is explained by sequencing error."""

    filter_name = "weak_evidence"
    description = "Mutation does not meet likelihood threshold"
    annotation_name = "SEQQ"
    annotation_description = "Phred-scaled quality that alt alleles are not sequencing errors"
    required_annotations = (TUMOR_LOD_KEY,)

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        lods = record.attribute_array(TUMOR_LOD_KEY)
        tumor_log10_odds = float(lods[best_alt_index(record)])
        return posterior_probability_of_error(tumor_log10_odds, state.log10_prior_of_somatic_variant(record))


class StrandArtifactFilter(ArtifactEstimator):
    """Posterior that alt reads are confined to one strand by an artifact.

    Real variants draw alt reads from each strand at the library's background
    forward-strand rate, which is learned from every record seen in a pass.
    The prior of an artifact is the run's learned prior of artifact vs. variant.
    """

    filter_name = "strand_bias"
    description = "Evidence for alt allele comes from one read direction only"
    annotation_name = "STRANDQ"
    annotation_description = "Phred-scaled quality of strand bias artifact"

    def __init__(self) -> None:
        self.forward_fraction = 0.5
        self._alt_forward_total = 0
        self._alt_total = 0

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        sb = summed_strand_counts(record, state)
        if sb is None:
            return 0.0
        alt_forward, alt_reverse = int(sb[2]), int(sb[3])
        n = alt_forward + alt_reverse
        if n == 0:
            return 0.0

        real_likelihood = binomial_probability(n, alt_forward, self.forward_fraction)
        artifact_likelihood = 0.5 * (
            binomial_probability(n, alt_forward, 1.0 - _STRAND_ARTIFACT_ERROR)
            + binomial_probability(n, alt_forward, _STRAND_ARTIFACT_ERROR)
        )
        prior = clamp(state.prior_prob_artifact_vs_variant, 1e-6, 1.0 - 1e-6)
        numerator = prior * artifact_likelihood
        denom = numerator + (1.0 - prior) * real_likelihood
        return numerator / denom if denom > 0 else 0.0

    def accumulate_data_for_learning(self, record: VariantRecord, state: RunState) -> None:
        sb = summed_strand_counts(record, state)
        if sb is None:
            return
        self._alt_forward_total += int(sb[2])
        self._alt_total += int(sb[2]) + int(sb[3])

    def learn_parameters(self) -> None:
        self.forward_fraction = (self._alt_forward_total + 1.0) / (self._alt_total + 2.0)
        logger.debug("Learned alt forward-strand fraction %.4f", self.forward_fraction)

    def clear_accumulated_data(self) -> None:
        self._alt_forward_total = 0
        self._alt_total = 0


class ContaminationFilter(ArtifactEstimator):
    """Posterior that alt reads come from a contaminating sample's germline."""

    filter_name = "contamination"
    description = "contamination"
    technical = False
    annotation_name = "CONTQ"
    annotation_description = "Phred-scaled qualities that alt allele are not due to contamination"
    required_annotations = (POPULATION_AF_KEY,)

    def __init__(self, contamination_by_sample: Mapping[str, float], default_contamination: float) -> None:
        self.contamination_by_sample: Dict[str, float] = dict(contamination_by_sample)
        self.default_contamination = default_contamination

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        somatic_prior = 10.0 ** state.log10_prior_of_somatic_variant(record)
        alt_counts: List[int] = []
        posteriors: List[float] = []

        for genotype in state.tumor_genotypes(record):
            ad = genotype.allele_depths
            if ad is None or len(ad) < 2:
                continue
            contamination = self.contamination_by_sample.get(genotype.sample, self.default_contamination)

            max_fraction_index = 0
            if genotype.has(ALLELE_FRACTION_KEY):
                fractions = genotype.float_array(ALLELE_FRACTION_KEY)
                if np.any(~np.isnan(fractions)):
                    max_fraction_index = int(np.nanargmax(fractions))
            if max_fraction_index + 1 >= len(ad):
                continue
            # AD covers all alleles while AF covers alts only
            alt_count = int(ad[max_fraction_index + 1])
            depth = int(ad.sum())
            allele_frequency = _population_allele_frequency(record, max_fraction_index)

            somatic_likelihood = 1.0 / (depth + 1)
            single_contaminant = 2 * allele_frequency * (1 - allele_frequency) * binomial_probability(
                depth, alt_count, contamination / 2
            ) + allele_frequency**2 * binomial_probability(depth, alt_count, contamination)
            many_contaminants = binomial_probability(depth, alt_count, contamination * allele_frequency)
            contaminant_likelihood = max(single_contaminant, many_contaminants)

            numerator = (1 - somatic_prior) * contaminant_likelihood
            denom = numerator + somatic_prior * somatic_likelihood
            alt_counts.append(alt_count)
            posteriors.append(numerator / denom if denom > 0 else 0.0)

        return weighted_median(posteriors, alt_counts)


class GermlineFilter(ArtifactEstimator):
    """Posterior that the call is a germline het/hom-alt variant rather than somatic."""

    filter_name = "germline"
    description = "Evidence indicates this site is germline, not somatic"
    technical = False
    annotation_name = "GERMQ"
    annotation_description = "Phred-scaled quality that alt alleles are not germline variants"
    required_annotations = (POPULATION_AF_KEY,)

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        alt_index = best_alt_index(record)
        f = _population_allele_frequency(record, alt_index)
        het_prior = 2 * f * (1 - f)
        hom_prior = f * f
        somatic_prior = 10.0 ** state.log10_prior_of_somatic_variant(record)
        if het_prior + hom_prior <= 0.0:
            return 0.0

        tumor_ad = summed_allele_depths(record, state)
        normal_ad = summed_allele_depths(record, state, normal=True)
        t_alt, t_depth = int(tumor_ad[alt_index + 1]), int(tumor_ad.sum())
        n_alt, n_depth = int(normal_ad[alt_index + 1]), int(normal_ad.sum())

        het = binomial_probability(t_depth, t_alt, 0.5) * binomial_probability(n_depth, n_alt, 0.5)
        hom = binomial_probability(t_depth, t_alt, 1.0 - _NORMAL_SOMATIC_ERROR) * binomial_probability(
            n_depth, n_alt, 1.0 - _NORMAL_SOMATIC_ERROR
        )
        # somatic allele fraction is unknown: uniform over [0, 1] in the tumor
        somatic = binomial_probability(n_depth, n_alt, _NORMAL_SOMATIC_ERROR) / (t_depth + 1)

        germline = het_prior * het + hom_prior * hom
        denom = germline + somatic_prior * somatic
        return germline / denom if denom > 0 else 0.0


class FilteredHaplotypeFilter(ArtifactEstimator):
    """Flags calls phased with a nearby call that is already above the threshold."""

    filter_name = "haplotype"
    description = "Variant near filtered variant on same haplotype."

    def __init__(self, max_distance: int) -> None:
        self.max_distance = max_distance

    def calculate_artifact_probability(self, record: VariantRecord, state: RunState) -> float:
        for genotype in state.tumor_genotypes(record):
            if not genotype.has_phase_info:
                continue
            filtered_call: Optional[Tuple[int, FrozenSet[str]]] = state.filtered_phased_calls.get(genotype.phase_id)
            if filtered_call is None:
                continue
            position, pgts = filtered_call
            if abs(position - record.position) <= self.max_distance and genotype.phased_genotype in pgts:
                return 1.0
        return 0.0
