import pytest

from somfilter.config import FilteringConfig
from somfilter.filters import (
    BaseQualityFilter,
    ClusteredEventsFilter,
    ContaminationFilter,
    DuplicatedAltReadFilter,
    FilteredHaplotypeFilter,
    GermlineFilter,
    LogOddsOverDepthFilter,
    MappingQualityFilter,
    MultiallelicFilter,
    NRatioFilter,
    PanelOfNormalsFilter,
    ReadPositionFilter,
    StrandArtifactFilter,
    StrictStrandBiasFilter,
    TumorEvidenceFilter,
    build_estimators,
)
from somfilter.models import Genotype, MissingEvidenceError, VariantRecord
from somfilter.state import RunState


def _state(**config) -> RunState:
    return RunState(config=FilteringConfig(**config), normal_samples=frozenset({"NORMAL"}))


def _record(pos=1000, *, info=None, tumor=None, normal=None, ref="A", alts=("T",)) -> VariantRecord:
    genotypes = [Genotype("TUMOR", tumor or {})]
    if normal is not None:
        genotypes.append(Genotype("NORMAL", normal))
    return VariantRecord(
        contig="chr1",
        position=pos,
        ref=ref,
        alts=tuple(alts),
        info=info or {},
        genotypes=tuple(genotypes),
    )


def test_build_estimators_default_and_mitochondria():
    names = [e.filter_name for e in build_estimators(FilteringConfig())]
    assert names[0] == "weak_evidence"
    assert {"germline", "haplotype", "clustered_events", "multiallelic"} <= set(names)
    assert "low_avg_alt_quality" not in names

    mito = [e.filter_name for e in build_estimators(FilteringConfig(mitochondria=True))]
    assert "low_avg_alt_quality" in mito
    assert not {"germline", "haplotype", "clustered_events", "multiallelic"} & set(mito)


def test_technical_classification():
    by_name = {e.filter_name: e for e in build_estimators(FilteringConfig())}
    assert by_name["weak_evidence"].is_technical_artifact()
    assert not by_name["contamination"].is_technical_artifact()
    assert not by_name["germline"].is_technical_artifact()
    assert not by_name["clustered_events"].is_technical_artifact()


def test_record_accessors_raise_on_missing_evidence():
    rec = _record()
    with pytest.raises(MissingEvidenceError):
        rec.attribute("TLOD")
    with pytest.raises(KeyError):
        rec.genotypes[0].float_array("AD")


def test_tumor_evidence_tracks_log_odds():
    state = _state()
    f = TumorEvidenceFilter()
    weak = f.artifact_probability(_record(info={"TLOD": (0.5,)}), state)
    strong = f.artifact_probability(_record(info={"TLOD": (30.0,)}), state)
    assert weak > 0.99
    assert strong < 1e-6
    assert f.artifact_probability(_record(), state) == 0.0


def test_tumor_evidence_uses_best_alt():
    state = _state()
    f = TumorEvidenceFilter()
    multi = _record(info={"TLOD": (0.5, 30.0)}, alts=("T", "G"))
    assert f.artifact_probability(multi, state) < 1e-6


def test_base_and_mapping_quality():
    state = _state()
    assert BaseQualityFilter(20).artifact_probability(_record(info={"MBQ": (30, 10)}), state) == 1.0
    assert BaseQualityFilter(20).artifact_probability(_record(info={"MBQ": (30, 30)}), state) == 0.0

    mq = MappingQualityFilter(30, long_indel_length=5)
    assert mq.artifact_probability(_record(info={"MMQ": (60, 20)}), state) == 1.0
    # long deletion: alt reads are ignored, ref reads carry the signal
    long_del = _record(info={"MMQ": (60, 10)}, ref="ACGTAC", alts=("A",))
    assert mq.artifact_probability(long_del, state) == 0.0
    long_del_bad_ref = _record(info={"MMQ": (20, 60)}, ref="ACGTAC", alts=("A",))
    assert mq.artifact_probability(long_del_bad_ref, state) == 1.0


def test_simple_hard_filters():
    state = _state()
    assert DuplicatedAltReadFilter(1).artifact_probability(_record(info={"UNIQ_ALT_READ_COUNT": 1}), state) == 1.0
    assert DuplicatedAltReadFilter(1).artifact_probability(_record(info={"UNIQ_ALT_READ_COUNT": 2}), state) == 0.0
    assert PanelOfNormalsFilter().artifact_probability(_record(info={"PON": True}), state) == 1.0
    assert PanelOfNormalsFilter().artifact_probability(_record(), state) == 0.0
    assert ReadPositionFilter(5).artifact_probability(_record(info={"MPOS": (2,)}), state) == 1.0
    assert ClusteredEventsFilter(2).artifact_probability(_record(info={"ECNT": 3}), state) == 1.0
    assert ClusteredEventsFilter(2).artifact_probability(_record(info={"ECNT": 2}), state) == 0.0


def test_strict_strand_and_n_ratio():
    state = _state()
    one_strand = _record(tumor={"SB": (10, 10, 8, 0), "AD": (20, 8)})
    assert StrictStrandBiasFilter(1).artifact_probability(one_strand, state) == 1.0
    assert StrictStrandBiasFilter(0).artifact_probability(one_strand, state) == 0.0

    ns = _record(info={"NCount": 4}, tumor={"AD": (20, 8)})
    assert NRatioFilter(0.5).artifact_probability(ns, state) == 1.0
    assert NRatioFilter(float("inf")).artifact_probability(ns, state) == 0.0


def test_multiallelic_counts_alleles_passing_lod():
    state = _state()
    f = MultiallelicFilter(1, 3.0)
    two = _record(info={"TLOD": (10.0, 5.0)}, alts=("T", "G"))
    one = _record(info={"TLOD": (10.0, 1.0)}, alts=("T", "G"))
    assert f.artifact_probability(two, state) == 1.0
    assert f.artifact_probability(one, state) == 0.0


def test_low_average_alt_quality():
    state = _state()
    f = LogOddsOverDepthFilter(0.0035)
    assert f.artifact_probability(_record(info={"TLOD": (0.1,), "DP": 100}), state) == 1.0
    assert f.artifact_probability(_record(info={"TLOD": (10.0,), "DP": 100}), state) == 0.0


def test_strand_artifact_filter_learns_forward_fraction():
    state = _state()
    f = StrandArtifactFilter()
    one_strand = _record(tumor={"SB": (10, 10, 12, 0)})
    balanced = _record(tumor={"SB": (10, 10, 6, 6)})

    assert f.artifact_probability(one_strand, state) > f.artifact_probability(balanced, state)

    f.accumulate_data_for_learning(balanced, state)
    f.accumulate_data_for_learning(one_strand, state)
    f.learn_parameters()
    assert f.forward_fraction == pytest.approx((18 + 1) / (24 + 2))

    f.clear_accumulated_data()
    f.accumulate_data_for_learning(balanced, state)
    f.accumulate_data_for_learning(one_strand, state)
    f.learn_parameters()
    assert f.forward_fraction == pytest.approx((18 + 1) / (24 + 2))


def test_contamination_filter_depends_on_contamination():
    state = _state()
    rec = _record(info={"POPAF": (0.3,)}, tumor={"AD": (95, 5), "AF": (0.05,)})
    clean = ContaminationFilter({}, 0.0).artifact_probability(rec, state)
    dirty = ContaminationFilter({"TUMOR": 0.1}, 0.0).artifact_probability(rec, state)
    assert clean == 0.0
    assert dirty > 0.5


def test_germline_filter_prefers_germline_for_common_het():
    state = _state()
    het = _record(
        info={"POPAF": (0.3,)},
        tumor={"AD": (30, 30)},
        normal={"AD": (30, 30)},
    )
    somatic = _record(
        info={"POPAF": (6.0,)},
        tumor={"AD": (50, 10)},
        normal={"AD": (40, 0)},
    )
    f = GermlineFilter()
    assert f.artifact_probability(het, state) > 0.99
    assert f.artifact_probability(somatic, state) < 0.01


def test_haplotype_filter_uses_phased_register():
    state = _state()
    f = FilteredHaplotypeFilter(100)
    phased = {"PGT": "0|1", "PID": "1000_A_T"}

    state.record_filtered_haplotypes(_record(1000, tumor=phased))

    assert f.artifact_probability(_record(1050, tumor=phased), state) == 1.0
    assert f.artifact_probability(_record(1000, tumor=phased), state) == 1.0
    assert f.artifact_probability(_record(1200, tumor=phased), state) == 0.0
    other_haplotype = {"PGT": "1|0", "PID": "1000_A_T"}
    assert f.artifact_probability(_record(1050, tumor=other_haplotype), state) == 0.0
    assert f.artifact_probability(_record(1050), state) == 0.0
