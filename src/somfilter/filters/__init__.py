"""Built-in artifact estimators and the ordered ensemble used by the engine."""

from __future__ import annotations

from typing import List

from ..config import FilteringConfig
from .base import ArtifactEstimator, HardFilter
from .probabilistic import (
    ContaminationFilter,
    FilteredHaplotypeFilter,
    GermlineFilter,
    StrandArtifactFilter,
    TumorEvidenceFilter,
)
from .quality import (
    BaseQualityFilter,
    ClusteredEventsFilter,
    DuplicatedAltReadFilter,
    LogOddsOverDepthFilter,
    MappingQualityFilter,
    MultiallelicFilter,
    NRatioFilter,
    PanelOfNormalsFilter,
    ReadPositionFilter,
    StrictStrandBiasFilter,
)

__all__ = [
    "ArtifactEstimator",
    "HardFilter",
    "build_estimators",
    "BaseQualityFilter",
    "ClusteredEventsFilter",
    "ContaminationFilter",
    "DuplicatedAltReadFilter",
    "FilteredHaplotypeFilter",
    "GermlineFilter",
    "LogOddsOverDepthFilter",
    "MappingQualityFilter",
    "MultiallelicFilter",
    "NRatioFilter",
    "PanelOfNormalsFilter",
    "ReadPositionFilter",
    "StrandArtifactFilter",
    "StrictStrandBiasFilter",
    "TumorEvidenceFilter",
]


def build_estimators(config: FilteringConfig) -> List[ArtifactEstimator]:
    """Construct the estimator ensemble in the order it is traversed every pass."""
    estimators: List[ArtifactEstimator] = [
        TumorEvidenceFilter(),
        BaseQualityFilter(config.min_median_base_quality),
        MappingQualityFilter(config.min_median_mapping_quality, config.long_indel_length),
        DuplicatedAltReadFilter(config.unique_alt_read_count),
        StrandArtifactFilter(),
        ContaminationFilter(config.contamination_by_sample, config.contamination_estimate),
        PanelOfNormalsFilter(),
        NRatioFilter(config.n_ratio),
        StrictStrandBiasFilter(config.min_reads_on_each_strand),
        ReadPositionFilter(config.min_median_read_position),
    ]

    if config.mitochondria:
        estimators.append(LogOddsOverDepthFilter(config.min_log10_odds_divided_by_depth))
    else:
        estimators.extend(
            [
                ClusteredEventsFilter(config.max_events_in_region),
                MultiallelicFilter(config.num_alt_alleles_threshold, config.tumor_lod_to_count_allele),
                FilteredHaplotypeFilter(config.max_distance_to_filtered_call_on_same_haplotype),
                GermlineFilter(),
            ]
        )
    return estimators
