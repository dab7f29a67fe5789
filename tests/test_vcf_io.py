from pathlib import Path

import pysam
import pytest

from somfilter.config import FilteringConfig, ThresholdStrategy
from somfilter.engine import FilteringEngine, run_learning_passes
from somfilter.filters import PanelOfNormalsFilter, TumorEvidenceFilter
from somfilter.vcf_io import VcfRecordSource, normal_samples_from_header, write_filtered_vcf


def _make_vcf(path: Path) -> Path:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_meta("normal_sample", "NORMAL")
    header.add_sample("TUMOR")
    header.add_sample("NORMAL")
    header.contigs.add("chr1", length=10_000)
    header.filters.add("old_filter", None, None, "From an earlier run")
    header.info.add("TLOD", "A", "Float", "Tumor log odds")
    header.info.add("PON", 0, "Flag", "In panel of normals")
    header.formats.add("GT", 1, "String", "Genotype")
    header.formats.add("AD", "R", "Integer", "Allelic depths")
    header.formats.add("PGT", 1, "String", "Phased genotype")
    header.formats.add("PID", 1, "String", "Phase set id")

    vcf_path = path / "calls.vcf"
    rows = [
        (100, ("A", "T"), 25.0, False),
        (200, ("C", "G"), 0.2, False),
        (300, ("G", "A"), 30.0, True),
        (400, ("T", "TAA"), None, False),
    ]
    with pysam.VariantFile(str(vcf_path), "w", header=header) as vcf:
        for pos, alleles, tlod, pon in rows:
            rec = vcf.new_record(
                contig="chr1",
                start=pos - 1,
                stop=pos - 1 + len(alleles[0]),
                alleles=alleles,
                filter="old_filter",
            )
            if tlod is not None:
                rec.info["TLOD"] = (tlod,)
            if pon:
                rec.info["PON"] = True
            rec.samples["TUMOR"]["GT"] = (0, 1)
            rec.samples["TUMOR"]["AD"] = (30, 10)
            rec.samples["NORMAL"]["GT"] = (0, 0)
            rec.samples["NORMAL"]["AD"] = (30, 0)
            if pos == 100:
                rec.samples["TUMOR"]["PGT"] = "0|1"
                rec.samples["TUMOR"]["PID"] = "100_A_T"
            vcf.write(rec)
    return vcf_path


def test_normal_samples_from_header(tmp_path: Path) -> None:
    vcf_path = _make_vcf(tmp_path)
    with pysam.VariantFile(str(vcf_path)) as vcf:
        assert normal_samples_from_header(vcf.header) == {"NORMAL"}


def test_record_source_is_reiterable_and_converts_fields(tmp_path: Path) -> None:
    source = VcfRecordSource(_make_vcf(tmp_path))
    first = list(source)
    second = list(source)
    assert len(first) == len(second) == 4
    assert source.samples == ["TUMOR", "NORMAL"]
    assert source.normal_samples == {"NORMAL"}

    rec = first[0]
    assert rec.position == 100
    assert rec.is_snv
    assert rec.attribute_array("TLOD")[0] == pytest.approx(25.0)
    tumor = rec.genotypes[0]
    assert tumor.sample == "TUMOR"
    assert list(tumor.allele_depths) == [30, 10]
    assert tumor.has_phase_info
    assert tumor.phase_id == "100_A_T"

    assert first[2].has_flag("PON")
    assert not first[0].has_flag("PON")
    assert not first[3].has_attribute("TLOD")
    assert not first[3].is_snv


def test_write_filtered_vcf_replaces_filters(tmp_path: Path) -> None:
    source = VcfRecordSource(_make_vcf(tmp_path))
    config = FilteringConfig(threshold_strategy=ThresholdStrategy.CONSTANT, posterior_threshold=0.5)
    engine = FilteringEngine(
        config,
        estimators=[TumorEvidenceFilter(), PanelOfNormalsFilter()],
        normal_samples=source.normal_samples,
    )
    run_learning_passes(engine, source)

    out_path = tmp_path / "out" / "filtered.vcf"
    counts = write_filtered_vcf(source, engine, out_path, progress=False)
    assert counts == {"records_total": 4, "records_pass": 2, "records_filtered": 2}

    with pysam.VariantFile(str(out_path)) as vcf:
        assert "weak_evidence" in vcf.header.filters
        assert "panel_of_normals" in vcf.header.filters
        assert "artifact" in vcf.header.filters
        assert "SEQQ" in vcf.header.info
        recs = list(vcf)

    filters = [list(r.filter.keys()) for r in recs]
    assert filters == [["PASS"], ["weak_evidence"], ["panel_of_normals"], ["PASS"]]
    assert recs[0].info["SEQQ"] > 50
    assert recs[1].info["SEQQ"] == 1
    # no TLOD, so no quality annotation either
    assert "SEQQ" not in recs[3].info

    summary = engine.summary()
    assert summary.pass_count == 2


def test_write_filtered_vcf_gz(tmp_path: Path) -> None:
    source = VcfRecordSource(_make_vcf(tmp_path))
    engine = FilteringEngine(FilteringConfig(num_learning_passes=1), normal_samples=source.normal_samples)
    run_learning_passes(engine, source)
    out_path = tmp_path / "filtered.vcf.gz"
    counts = write_filtered_vcf(source, engine, out_path, progress=False, header_source="somfilter test")
    assert counts["records_total"] == 4
    with pysam.VariantFile(str(out_path)) as vcf:
        assert len(list(vcf)) == 4
        assert any(r.key == "source" for r in vcf.header.records)
