from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from .config import FilteringConfig
from .models import Genotype, VariantRecord
from .thresholds import select_threshold

logger = logging.getLogger(__name__)

FIRST_PASS_THRESHOLD = 0.5
LOG10_ONE_THIRD = math.log10(1.0 / 3.0)


@dataclass
class RunState:
    """Learned parameters, per-pass accumulators and the phased-call register.

    Constant inputs (config, normal samples, callable sites) are fixed at
    construction. Learned parameters change only in :meth:`learn_parameters`.
    Accumulators are reset by :meth:`clear_accumulated_data`.
    """

    config: FilteringConfig
    normal_samples: FrozenSet[str] = frozenset()
    total_callable_sites: Optional[int] = None

    log10_prior_somatic_snv: float = field(init=False)
    log10_prior_somatic_indel: float = field(init=False)
    prior_prob_artifact_vs_variant: float = field(init=False)
    artifact_probability_threshold: float = field(init=False, default=FIRST_PASS_THRESHOLD)

    real_variant_count: float = field(init=False, default=0.0)
    real_snv_count: float = field(init=False, default=0.0)
    real_indel_count: float = field(init=False, default=0.0)
    technical_artifact_count: float = field(init=False, default=0.0)
    artifact_probabilities: List[float] = field(init=False, default_factory=list)

    # phase id -> (position, PGTs) of calls currently above the threshold
    filtered_phased_calls: Dict[str, Tuple[int, FrozenSet[str]]] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.normal_samples = frozenset(self.normal_samples)
        self.log10_prior_somatic_snv = self.config.log10_prior_somatic_snv
        self.log10_prior_somatic_indel = self.config.log10_prior_somatic_indel
        self.prior_prob_artifact_vs_variant = self.config.initial_prior_artifact_vs_variant

    def is_normal(self, genotype: Genotype) -> bool:
        return genotype.sample in self.normal_samples

    def tumor_genotypes(self, record: VariantRecord) -> List[Genotype]:
        return [g for g in record.genotypes if not self.is_normal(g)]

    def normal_genotypes(self, record: VariantRecord) -> List[Genotype]:
        return [g for g in record.genotypes if self.is_normal(g)]

    def log10_prior_of_somatic_variant(self, record: VariantRecord) -> float:
        # an SNV prior covers any of the three alternate bases
        if record.is_snv:
            return LOG10_ONE_THIRD + self.log10_prior_somatic_snv
        return self.log10_prior_somatic_indel

    def record_filtered_haplotypes(self, record: VariantRecord) -> None:
        """Register the phased genotypes of a call currently above the threshold."""
        pgts_by_phase_id: Dict[str, set] = {}
        for g in self.tumor_genotypes(record):
            if g.has_phase_info:
                pgts_by_phase_id.setdefault(g.phase_id, set()).add(g.phased_genotype)

        for phase_id, pgts in pgts_by_phase_id.items():
            self.filtered_phased_calls[phase_id] = (record.position, frozenset(pgts))

    def add_real_variant_count(self, x: float, *, is_snv: bool) -> None:
        self.real_variant_count += x
        if is_snv:
            self.real_snv_count += x
        else:
            self.real_indel_count += x

    def add_technical_artifact_count(self, x: float) -> None:
        self.technical_artifact_count += x

    def add_artifact_probability(self, p: float) -> None:
        self.artifact_probabilities.append(p)

    def _log10_somatic_rate(self, count: float, previous: float, label: str) -> float:
        assert self.total_callable_sites is not None
        if count <= 0 or self.total_callable_sites <= 0:
            logger.warning(
                "Cannot re-estimate the somatic %s prior from %.3f expected calls over %d callable sites; "
                "keeping log10 prior %.3f.",
                label,
                count,
                self.total_callable_sites,
                previous,
            )
            return previous
        return math.log10(count / self.total_callable_sites)

    def learn_parameters(self) -> None:
        """Re-derive global priors and the threshold from this pass's accumulators."""
        self.prior_prob_artifact_vs_variant = (self.technical_artifact_count + 1.0) / (
            self.real_variant_count + self.technical_artifact_count + 2.0
        )
        if self.total_callable_sites is not None:
            self.log10_prior_somatic_snv = self._log10_somatic_rate(
                self.real_snv_count, self.log10_prior_somatic_snv, "SNV"
            )
            self.log10_prior_somatic_indel = self._log10_somatic_rate(
                self.real_indel_count, self.log10_prior_somatic_indel, "indel"
            )

        self.artifact_probability_threshold = select_threshold(self.config, self.artifact_probabilities)

        logger.info(
            "Learned: threshold=%.4f prior(artifact vs variant)=%.4f log10 prior SNV=%.3f indel=%.3f",
            self.artifact_probability_threshold,
            self.prior_prob_artifact_vs_variant,
            self.log10_prior_somatic_snv,
            self.log10_prior_somatic_indel,
        )

    def clear_accumulated_data(self) -> None:
        self.real_variant_count = 0.0
        self.real_snv_count = 0.0
        self.real_indel_count = 0.0
        self.technical_artifact_count = 0.0
        self.artifact_probabilities.clear()
