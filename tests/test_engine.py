import logging
import math
from typing import Dict, Optional

import pytest

from somfilter.config import ConfigurationError, FilteringConfig, ThresholdStrategy
from somfilter.engine import FilteringEngine, filter_records, run_learning_passes
from somfilter.filters import ArtifactEstimator, TumorEvidenceFilter
from somfilter.models import Genotype, VariantRecord
from somfilter.state import FIRST_PASS_THRESHOLD


class _ByPosition(ArtifactEstimator):
    """Returns a fixed probability per record position (``default`` elsewhere)."""

    def __init__(
        self,
        name: str,
        probs: Optional[Dict[int, float]] = None,
        *,
        default: float = 0.0,
        technical: bool = True,
    ) -> None:
        self.filter_name = name
        self.probs = probs or {}
        self.default = default
        self.technical = technical

    def calculate_artifact_probability(self, record, state):
        return self.probs.get(record.position, self.default)


def _record(pos: int, *, info=None, tumor=None, ref: str = "A", alts=("T",)) -> VariantRecord:
    return VariantRecord(
        contig="chr1",
        position=pos,
        ref=ref,
        alts=tuple(alts),
        info=info or {},
        genotypes=(Genotype("TUMOR", tumor or {}),),
    )


def _constant_config(threshold: float = 0.5, passes: int = 2) -> FilteringConfig:
    return FilteringConfig(
        threshold_strategy=ThresholdStrategy.CONSTANT,
        posterior_threshold=threshold,
        num_learning_passes=passes,
    )


def test_constant_estimator_rejects_everything_with_single_reason():
    records = [_record(p) for p in (100, 200, 300, 400)]
    engine = FilteringEngine(_constant_config(), estimators=[_ByPosition("always", default=0.9)])

    run_learning_passes(engine, records)
    decisions = list(filter_records(engine, records))

    assert engine.threshold == pytest.approx(0.5)
    assert len(decisions) == len(records)
    for d in decisions:
        assert d.rejected
        assert d.filters == ("always",)
        assert d.artifact_probability == pytest.approx(0.9)


def test_phased_register_keeps_only_the_call_above_threshold():
    tumor = {"PGT": "0|1", "PID": "100_A_T"}
    records = [_record(100, tumor=tumor), _record(150, tumor=tumor)]
    engine = FilteringEngine(
        _constant_config(),
        estimators=[_ByPosition("by_position", {100: 0.9, 150: 0.1})],
    )

    for r in records:
        engine.accumulate_data(r)

    assert engine.state.filtered_phased_calls == {"100_A_T": (100, frozenset({"0|1"}))}


def test_learning_is_idempotent_after_clear():
    records = [
        _record(100, info={"TLOD": (20.0,)}, tumor={"AD": (30, 10), "SB": (15, 15, 6, 4)}),
        _record(200, info={"TLOD": (2.0,)}, tumor={"AD": (30, 3), "SB": (15, 15, 3, 0)}),
        _record(300, info={"TLOD": (8.0,)}, tumor={"AD": (30, 6), "SB": (15, 15, 2, 4)}),
    ]

    def learned(engine: FilteringEngine):
        s = engine.state
        strand = next(e for e in engine.estimators if e.filter_name == "strand_bias")
        return (
            s.artifact_probability_threshold,
            s.prior_prob_artifact_vs_variant,
            s.log10_prior_somatic_snv,
            s.log10_prior_somatic_indel,
            strand.forward_fraction,
        )

    once = FilteringEngine(FilteringConfig(), total_callable_sites=10_000)
    for r in records:
        once.accumulate_data(r)
    once.learn_parameters()

    twice = FilteringEngine(FilteringConfig(), total_callable_sites=10_000)
    for r in records:
        twice.accumulate_data(r)
    twice.clear_accumulated_data()
    for r in records:
        twice.accumulate_data(r)
    twice.learn_parameters()

    assert learned(once) == pytest.approx(learned(twice))


def test_accumulators_reset_after_learning():
    records = [_record(p) for p in (100, 200)]
    engine = FilteringEngine(_constant_config(), estimators=[_ByPosition("x", default=0.2)])
    for r in records:
        engine.accumulate_data(r)
    assert engine.state.real_variant_count == pytest.approx(1.6)
    assert len(engine.state.artifact_probabilities) == 2

    engine.learn_parameters()

    assert engine.state.real_variant_count == 0.0
    assert engine.state.technical_artifact_count == 0.0
    assert engine.state.artifact_probabilities == []


def test_first_pass_uses_fixed_threshold():
    engine = FilteringEngine(_constant_config(threshold=0.05), estimators=[_ByPosition("x")])
    assert engine.threshold == FIRST_PASS_THRESHOLD


def test_priors_learned_from_callable_sites(caplog):
    records = [_record(100 * i) for i in range(1, 11)]
    engine = FilteringEngine(
        _constant_config(passes=1),
        estimators=[_ByPosition("never")],
        total_callable_sites=1000,
    )

    with caplog.at_level(logging.WARNING):
        run_learning_passes(engine, records)

    assert engine.state.log10_prior_somatic_snv == pytest.approx(-2.0)
    # no indels were seen, so the configured indel prior is kept
    assert engine.state.log10_prior_somatic_indel == pytest.approx(-7.0)
    assert "indel" in caplog.text
    assert engine.state.prior_prob_artifact_vs_variant == pytest.approx(1.0 / 12.0)


def test_priors_unchanged_without_callable_sites():
    records = [_record(100 * i) for i in range(1, 4)]
    engine = FilteringEngine(_constant_config(passes=1), estimators=[_ByPosition("never")])
    run_learning_passes(engine, records)
    assert engine.state.log10_prior_somatic_snv == pytest.approx(-6.0)


def test_missing_required_annotation_withholds_signal():
    engine = FilteringEngine(_constant_config(), estimators=[TumorEvidenceFilter()])
    with_lod = _record(100, info={"TLOD": (0.5,)})
    without_lod = _record(200)

    assert engine.artifact_probabilities(without_lod)[engine.estimators[0]] == 0.0

    engine.start_decision_pass()
    d_without = engine.apply_filters(without_lod)
    d_with = engine.apply_filters(with_lod)
    assert "SEQQ" not in d_without.annotations
    assert not d_without.rejected
    assert "SEQQ" in d_with.annotations


def test_output_stats_attribution():
    records = [_record(100), _record(200)]
    engine = FilteringEngine(
        _constant_config(passes=1),
        estimators=[_ByPosition("x", {100: 0.9, 200: 0.2})],
    )
    run_learning_passes(engine, records)
    decisions = list(filter_records(engine, records))
    assert [d.rejected for d in decisions] == [True, False]

    summary = engine.summary()
    assert summary.pass_count == 1
    assert summary.true_positives == pytest.approx(0.8)
    assert summary.false_positives == pytest.approx(0.2)
    assert summary.false_negatives == pytest.approx(0.1)

    (row,) = summary.filter_stats
    assert row.filter_name == "x"
    assert row.false_positive_count == pytest.approx(0.2)
    assert row.false_discovery_rate == pytest.approx(0.2)
    assert row.false_negative_count == pytest.approx(0.1)
    assert row.false_negative_rate == pytest.approx(0.1 / 0.9)
    assert sum(summary.probability_hist["counts"]) == 2


def test_summary_rates_are_nan_without_passing_calls(caplog):
    records = [_record(100), _record(200)]
    engine = FilteringEngine(_constant_config(passes=1), estimators=[_ByPosition("x", default=0.9)])
    run_learning_passes(engine, records)
    list(filter_records(engine, records))

    with caplog.at_level(logging.WARNING):
        summary = engine.summary()

    (row,) = summary.filter_stats
    assert math.isnan(row.false_discovery_rate)
    assert row.false_negative_rate == pytest.approx(1.0)
    assert "denominator is zero" in caplog.text
    assert summary.to_dict()["filter_stats"][0]["false_discovery_rate"] is None


def test_silent_estimators_are_left_out_of_summary():
    records = [_record(100)]
    engine = FilteringEngine(
        _constant_config(passes=1),
        estimators=[_ByPosition("x", default=0.9), _ByPosition("quiet")],
    )
    run_learning_passes(engine, records)
    list(filter_records(engine, records))
    assert [fs.filter_name for fs in engine.summary().filter_stats] == ["x"]


def test_combined_rejection_without_single_reason():
    records = [_record(100)]
    engine = FilteringEngine(
        _constant_config(threshold=0.5, passes=1),
        estimators=[_ByPosition("tech", default=0.4), _ByPosition("bio", default=0.4, technical=False)],
    )
    run_learning_passes(engine, records)
    (d,) = list(filter_records(engine, records))
    assert d.artifact_probability == pytest.approx(0.64)
    assert d.rejected
    assert d.filters == ()


def test_learning_requires_reiterable_records():
    engine = FilteringEngine(_constant_config(), estimators=[_ByPosition("x")])
    with pytest.raises(ValueError):
        run_learning_passes(engine, iter([_record(100)]))


def test_constant_threshold_is_applied_after_a_learning_pass():
    with pytest.raises(ConfigurationError):
        _constant_config(threshold=0.1, passes=0)

    records = [_record(100)]
    engine = FilteringEngine(_constant_config(threshold=0.1, passes=1), estimators=[_ByPosition("x", default=0.3)])
    with pytest.raises(ValueError):
        run_learning_passes(engine, records, num_passes=0)

    run_learning_passes(engine, records)
    assert engine.threshold == pytest.approx(0.1)
    (d,) = list(filter_records(engine, records))
    assert d.rejected
    assert d.filters == ("x",)


def test_bad_strategy_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        FilteringConfig(threshold_strategy="most_likely")
    with pytest.raises(ConfigurationError):
        FilteringConfig(max_false_discovery_rate=-0.1)
    with pytest.raises(ConfigurationError):
        FilteringConfig(contamination_by_sample={"TUMOR": 1.5})
