"""Run configuration for artifact filtering.

Everything here is constant for the life of a run. Learned quantities live in
:class:`somfilter.state.RunState`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping


class ConfigurationError(ValueError):
    """Raised for invalid or unrecognized configuration values."""


class ThresholdStrategy(str, Enum):
    CONSTANT = "constant"
    FALSE_DISCOVERY_RATE = "false_discovery_rate"
    OPTIMAL_F_SCORE = "optimal_f_score"

    @classmethod
    def parse(cls, value: str | ThresholdStrategy) -> ThresholdStrategy:
        if isinstance(value, ThresholdStrategy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ConfigurationError(
                f"Invalid threshold strategy: {value!r}. Choose one of: {choices}"
            ) from None


@dataclass(frozen=True)
class FilteringConfig:
    """Thresholding strategy, initial priors and one tunable per estimator."""

    threshold_strategy: ThresholdStrategy = ThresholdStrategy.OPTIMAL_F_SCORE
    posterior_threshold: float = 0.1
    max_false_discovery_rate: float = 0.05
    f_score_beta: float = 1.0
    num_learning_passes: int = 2

    log10_prior_somatic_snv: float = -6.0
    log10_prior_somatic_indel: float = -7.0
    initial_prior_artifact_vs_variant: float = 0.1

    mitochondria: bool = False

    min_median_base_quality: int = 20
    min_median_mapping_quality: int = 30
    long_indel_length: int = 5
    unique_alt_read_count: int = 0
    min_reads_on_each_strand: int = 0
    min_median_read_position: int = 1
    n_ratio: float = math.inf
    max_events_in_region: int = 2
    num_alt_alleles_threshold: int = 1
    tumor_lod_to_count_allele: float = 3.0
    max_distance_to_filtered_call_on_same_haplotype: int = 100
    min_log10_odds_divided_by_depth: float = 0.0035
    contamination_estimate: float = 0.0
    contamination_by_sample: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold_strategy", ThresholdStrategy.parse(self.threshold_strategy))
        self.validate()

    def validate(self) -> None:
        if not 0.0 <= self.posterior_threshold <= 1.0:
            raise ConfigurationError("posterior_threshold must be in [0, 1]")
        if self.max_false_discovery_rate < 0:
            raise ConfigurationError("max_false_discovery_rate must be non-negative")
        if self.f_score_beta < 0:
            raise ConfigurationError("f_score_beta must be non-negative")
        if self.num_learning_passes < 1:
            raise ConfigurationError("num_learning_passes must be at least 1")
        if not 0.0 <= self.initial_prior_artifact_vs_variant <= 1.0:
            raise ConfigurationError("initial_prior_artifact_vs_variant must be in [0, 1]")
        if self.log10_prior_somatic_snv > 0 or self.log10_prior_somatic_indel > 0:
            raise ConfigurationError("log10 somatic priors must be <= 0")
        contaminations: Dict[str, float] = dict(self.contamination_by_sample)
        contaminations["<default>"] = self.contamination_estimate
        for sample, c in contaminations.items():
            if not 0.0 <= c <= 1.0:
                raise ConfigurationError(f"Contamination for {sample} must be in [0, 1], got {c}")
