"""Threshold-style estimators: the record either clearly fails a check or does not."""

from __future__ import annotations

import math

import numpy as np

from ..models import VariantRecord
from ..state import RunState
from .base import TUMOR_LOD_KEY, HardFilter, best_alt_index, summed_allele_depths, summed_strand_counts

MEDIAN_BASE_QUALITY_KEY = "MBQ"
MEDIAN_MAPPING_QUALITY_KEY = "MMQ"
MEDIAN_READ_POSITION_KEY = "MPOS"
UNIQUE_ALT_READ_COUNT_KEY = "UNIQ_ALT_READ_COUNT"
N_COUNT_KEY = "NCount"
EVENT_COUNT_KEY = "ECNT"
IN_PON_KEY = "PON"
DEPTH_KEY = "DP"


def _per_allele(record: VariantRecord, key: str) -> np.ndarray:
    """R-numbered INFO values (ref first)."""
    return record.attribute_array(key)


class BaseQualityFilter(HardFilter):
    filter_name = "base_qual"
    description = "alt median base quality"
    required_annotations = (MEDIAN_BASE_QUALITY_KEY,)

    def __init__(self, min_median_base_quality: int) -> None:
        self.min_median_base_quality = min_median_base_quality

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        mbq = _per_allele(record, MEDIAN_BASE_QUALITY_KEY)
        idx = best_alt_index(record) + 1
        return idx < len(mbq) and mbq[idx] < self.min_median_base_quality


class MappingQualityFilter(HardFilter):
    filter_name = "map_qual"
    description = "ref and alt reads have a low median mapping quality"
    required_annotations = (MEDIAN_MAPPING_QUALITY_KEY,)

    def __init__(self, min_median_mapping_quality: int, long_indel_length: int) -> None:
        self.min_median_mapping_quality = min_median_mapping_quality
        self.long_indel_length = long_indel_length

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        mmq = _per_allele(record, MEDIAN_MAPPING_QUALITY_KEY)
        # alt reads of long indels are often misaligned; trust the ref reads there
        if record.max_indel_length >= self.long_indel_length:
            return mmq[0] < self.min_median_mapping_quality
        idx = best_alt_index(record) + 1
        return idx < len(mmq) and mmq[idx] < self.min_median_mapping_quality


class DuplicatedAltReadFilter(HardFilter):
    filter_name = "duplicate"
    description = "evidence for alt allele is overrepresented by apparent duplicates"
    required_annotations = (UNIQUE_ALT_READ_COUNT_KEY,)

    def __init__(self, unique_alt_read_count: int) -> None:
        self.unique_alt_read_count = unique_alt_read_count

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        return int(record.attribute(UNIQUE_ALT_READ_COUNT_KEY)) <= self.unique_alt_read_count


class StrictStrandBiasFilter(HardFilter):
    filter_name = "strict_strand"
    description = "evidence for alt allele is not represented on both strands"

    def __init__(self, min_reads_on_each_strand: int) -> None:
        self.min_reads_on_each_strand = min_reads_on_each_strand

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        if self.min_reads_on_each_strand <= 0:
            return False
        sb = summed_strand_counts(record, state)
        if sb is None:
            return False
        alt_forward, alt_reverse = int(sb[2]), int(sb[3])
        return min(alt_forward, alt_reverse) < self.min_reads_on_each_strand


class NRatioFilter(HardFilter):
    filter_name = "n_ratio"
    description = "ratio of N to alt exceeds specified ratio"
    required_annotations = (N_COUNT_KEY,)

    def __init__(self, n_ratio: float) -> None:
        self.n_ratio = n_ratio

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        if math.isinf(self.n_ratio):
            return False
        n_count = int(record.attribute(N_COUNT_KEY))
        alt_count = int(summed_allele_depths(record, state)[best_alt_index(record) + 1])
        if alt_count == 0:
            return n_count > 0
        return n_count / alt_count >= self.n_ratio


class ReadPositionFilter(HardFilter):
    filter_name = "position"
    description = "median distance of alt variants from end of reads"
    required_annotations = (MEDIAN_READ_POSITION_KEY,)

    def __init__(self, min_median_read_position: int) -> None:
        self.min_median_read_position = min_median_read_position

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        mpos = record.attribute_array(MEDIAN_READ_POSITION_KEY)
        idx = best_alt_index(record)
        return idx < len(mpos) and mpos[idx] < self.min_median_read_position


class PanelOfNormalsFilter(HardFilter):
    filter_name = "panel_of_normals"
    description = "Blacklisted site in panel of normals"

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        return record.has_flag(IN_PON_KEY)


class ClusteredEventsFilter(HardFilter):
    filter_name = "clustered_events"
    description = "Clustered events observed in the tumor"
    technical = False
    required_annotations = (EVENT_COUNT_KEY,)

    def __init__(self, max_events_in_region: int) -> None:
        self.max_events_in_region = max_events_in_region

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        return int(record.attribute(EVENT_COUNT_KEY)) > self.max_events_in_region


class MultiallelicFilter(HardFilter):
    filter_name = "multiallelic"
    description = "Site filtered because too many alt alleles pass tumor LOD"
    required_annotations = (TUMOR_LOD_KEY,)

    def __init__(self, num_alt_alleles_threshold: int, tumor_lod_to_count_allele: float) -> None:
        self.num_alt_alleles_threshold = num_alt_alleles_threshold
        self.tumor_lod_to_count_allele = tumor_lod_to_count_allele

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        lods = record.attribute_array(TUMOR_LOD_KEY)
        passing = int(np.sum(lods >= self.tumor_lod_to_count_allele))
        return passing > self.num_alt_alleles_threshold


class LogOddsOverDepthFilter(HardFilter):
    filter_name = "low_avg_alt_quality"
    description = "Low average alt quality"
    required_annotations = (TUMOR_LOD_KEY, DEPTH_KEY)

    def __init__(self, min_log10_odds_divided_by_depth: float) -> None:
        self.min_log10_odds_divided_by_depth = min_log10_odds_divided_by_depth

    def is_artifact(self, record: VariantRecord, state: RunState) -> bool:
        lod = float(record.attribute_array(TUMOR_LOD_KEY)[best_alt_index(record)])
        depth = int(record.attribute(DEPTH_KEY))
        if depth <= 0:
            return True
        return lod / depth < self.min_log10_odds_divided_by_depth
