"""Multi-pass calibration and decision engine.

Learning passes run every estimator over every record, accumulate expected
counts, then re-learn global priors and the artifact probability threshold.
The final pass applies the threshold without changing anything learned.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .combine import CombinedProbabilities, combine_artifact_probabilities
from .config import FilteringConfig
from .filters import ArtifactEstimator, build_estimators
from .models import FilteredRecord, VariantRecord
from .state import RunState
from .thresholds import EPSILON
from .utils import error_prob_to_phred

logger = logging.getLogger(__name__)

PROBABILITY_BINS = np.linspace(0.0, 1.0, 51)


@dataclass(frozen=True)
class FilterStats:
    """Expected false positives/negatives attributable to one estimator."""

    filter_name: str
    false_positive_count: float
    false_discovery_rate: float
    false_negative_count: float
    false_negative_rate: float


@dataclass(frozen=True)
class FilteringSummary:
    threshold: float
    pass_count: int
    true_positives: float
    false_positives: float
    false_negatives: float
    filter_stats: Tuple[FilterStats, ...]
    probability_hist: Dict[str, List[float]]

    def to_dict(self) -> Dict[str, object]:
        d = asdict(self)
        # NaN rates are not valid JSON
        for fs in d["filter_stats"]:
            for key in ("false_discovery_rate", "false_negative_rate"):
                if math.isnan(fs[key]):
                    fs[key] = None
        return d


class OutputStats:
    """Final-pass tally of expected TP/FP/FN mass, overall and per estimator."""

    def __init__(self, estimators: Sequence[ArtifactEstimator]) -> None:
        self.estimators = list(estimators)
        self.clear()

    def clear(self) -> None:
        self.pass_count = 0
        self.true_positives = 0.0
        self.false_positives = 0.0
        self.false_negatives = 0.0
        self.filter_fps: Dict[ArtifactEstimator, float] = {e: 0.0 for e in self.estimators}
        self.filter_fns: Dict[ArtifactEstimator, float] = {e: 0.0 for e in self.estimators}
        self.probability_counts = np.zeros(len(PROBABILITY_BINS) - 1, dtype=np.int64)

    def record_call(
        self,
        filtered: bool,
        artifact_probability: float,
        artifact_probabilities: Dict[ArtifactEstimator, float],
        threshold: float,
    ) -> None:
        if filtered:
            self.false_negatives += 1.0 - artifact_probability
        else:
            self.pass_count += 1
            self.false_positives += artifact_probability
            self.true_positives += 1.0 - artifact_probability

        for estimator, p in artifact_probabilities.items():
            if p > EPSILON and p > threshold - EPSILON:
                self.filter_fns[estimator] += 1.0 - artifact_probability
            elif not filtered:
                self.filter_fps[estimator] += p

        self.probability_counts += np.histogram([artifact_probability], bins=PROBABILITY_BINS)[0]

    def summarize(self, threshold: float) -> FilteringSummary:
        total_true_variants = self.true_positives + self.false_negatives
        rows: List[FilterStats] = []
        for estimator in self.estimators:
            fp = self.filter_fps[estimator]
            fn = self.filter_fns[estimator]
            if fp <= 0 and fn <= 0:
                continue
            fdr = fp / self.pass_count if self.pass_count > 0 else float("nan")
            fnr = fn / total_true_variants if total_true_variants > 0 else float("nan")
            if math.isnan(fdr) or math.isnan(fnr):
                logger.warning(
                    "Filter %s has FP=%.3f FN=%.3f but a rate denominator is zero "
                    "(passing calls=%d, expected true variants=%.3f).",
                    estimator.filter_name,
                    fp,
                    fn,
                    self.pass_count,
                    total_true_variants,
                )
            rows.append(
                FilterStats(
                    filter_name=estimator.filter_name,
                    false_positive_count=fp,
                    false_discovery_rate=fdr,
                    false_negative_count=fn,
                    false_negative_rate=fnr,
                )
            )

        return FilteringSummary(
            threshold=float(threshold),
            pass_count=int(self.pass_count),
            true_positives=float(self.true_positives),
            false_positives=float(self.false_positives),
            false_negatives=float(self.false_negatives),
            filter_stats=tuple(rows),
            probability_hist={
                "bin_edges": PROBABILITY_BINS.tolist(),
                "counts": self.probability_counts.tolist(),
            },
        )


class FilteringEngine:
    """Owns the estimator ensemble and the run state for one filtering run."""

    def __init__(
        self,
        config: FilteringConfig,
        *,
        estimators: Optional[Sequence[ArtifactEstimator]] = None,
        normal_samples: Iterable[str] = (),
        total_callable_sites: Optional[int] = None,
    ) -> None:
        self.config = config
        self.estimators: List[ArtifactEstimator] = (
            list(estimators) if estimators is not None else build_estimators(config)
        )
        self.state = RunState(
            config=config,
            normal_samples=frozenset(normal_samples),
            total_callable_sites=total_callable_sites,
        )
        self.output_stats = OutputStats(self.estimators)

    @property
    def threshold(self) -> float:
        return self.state.artifact_probability_threshold

    def artifact_probabilities(self, record: VariantRecord) -> Dict[ArtifactEstimator, float]:
        return {e: e.artifact_probability(record, self.state) for e in self.estimators}

    def combined_probabilities(self, record: VariantRecord) -> CombinedProbabilities:
        return combine_artifact_probabilities(self.artifact_probabilities(record))

    def exceeds_threshold(self, probability: float) -> bool:
        return probability > self.threshold - EPSILON

    def accumulate_data(self, record: VariantRecord) -> None:
        """Learning-pass bookkeeping for one record."""
        for estimator in self.estimators:
            estimator.accumulate_data_for_learning(record, self.state)

        combined = self.combined_probabilities(record)
        self.state.add_real_variant_count(1.0 - combined.overall, is_snv=record.is_snv)
        self.state.add_technical_artifact_count(combined.technical)

        if self.exceeds_threshold(combined.overall):
            self.state.record_filtered_haplotypes(record)

        self.state.add_artifact_probability(combined.overall)

    def learn_parameters(self) -> None:
        """End-of-pass learning; always followed by clearing this pass's data."""
        for estimator in self.estimators:
            estimator.learn_parameters()
        self.state.learn_parameters()
        # otherwise pass n would re-count the data of passes 0..n-1
        self.clear_accumulated_data()

    def clear_accumulated_data(self) -> None:
        for estimator in self.estimators:
            estimator.clear_accumulated_data()
        self.state.clear_accumulated_data()

    def start_decision_pass(self) -> None:
        self.output_stats.clear()

    def apply_filters(self, record: VariantRecord) -> FilteredRecord:
        """Decide one record, tally output stats and return the annotated result."""
        probabilities = self.artifact_probabilities(record)
        overall = combine_artifact_probabilities(probabilities).overall
        filtered = self.exceeds_threshold(overall)

        self.output_stats.record_call(filtered, overall, probabilities, self.threshold)

        reasons: List[str] = []
        annotations: Dict[str, int] = {}
        for estimator, p in probabilities.items():
            annotation = estimator.phred_scaled_posterior_annotation_name()
            if annotation is not None and estimator.has_required_annotations(record):
                annotations[annotation] = error_prob_to_phred(p)
            if p > EPSILON and self.exceeds_threshold(p):
                reasons.append(estimator.filter_name)

        return FilteredRecord(
            record=record,
            artifact_probability=overall,
            rejected=filtered,
            filters=tuple(reasons),
            annotations=annotations,
        )

    def summary(self) -> FilteringSummary:
        return self.output_stats.summarize(self.threshold)


def _require_reiterable(records: Iterable[VariantRecord]) -> None:
    if iter(records) is records:
        raise ValueError(
            "Records must be re-iterable (e.g. a list or VcfRecordSource); "
            "a one-shot iterator cannot be scanned once per pass."
        )


def run_learning_passes(
    engine: FilteringEngine,
    records: Iterable[VariantRecord],
    *,
    num_passes: Optional[int] = None,
    progress: bool = False,
) -> None:
    """Run the learning passes; each pass fully commits before the next starts.

    The decision threshold is only set by the configured strategy at the end of
    a pass, so at least one pass is required.
    """
    n = engine.config.num_learning_passes if num_passes is None else num_passes
    if n < 1:
        raise ValueError("num_passes must be at least 1")
    _require_reiterable(records)

    for k in range(1, n + 1):
        engine.clear_accumulated_data()
        it: Iterable[VariantRecord] = records
        if progress:
            it = tqdm(it, unit="record", desc=f"Learning pass {k}/{n}")
        count = 0
        for record in it:
            engine.accumulate_data(record)
            count += 1
        logger.info("Learning pass %d/%d: %d records", k, n, count)
        engine.learn_parameters()


def filter_records(
    engine: FilteringEngine,
    records: Iterable[VariantRecord],
    *,
    progress: bool = False,
) -> Iterator[FilteredRecord]:
    """Final decision pass; yields one FilteredRecord per input record."""
    engine.start_decision_pass()
    it: Iterable[VariantRecord] = records
    if progress:
        it = tqdm(it, unit="record", desc="Filtering")
    for record in it:
        yield engine.apply_filters(record)
