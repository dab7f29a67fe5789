from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pysam

from .utils import ensure_outdir, write_json
from .vcf_io import NORMAL_SAMPLE_HEADER_KEY, TUMOR_SAMPLE_HEADER_KEY

TUMOR = "TUMOR"
NORMAL = "NORMAL"
CONTIG = "chr1"
CONTIG_LENGTH = 100_000
CALLABLE_SITES = 1_000_000

_PHASE_ID = "5000_A_T"


def _call(pos: int, ref: str = "A", alt: str = "T", **overrides: Any) -> Dict[str, Any]:
    """A confidently somatic SNV; ``overrides`` replace single fields."""
    call: Dict[str, Any] = {
        "pos": pos,
        "alleles": (ref, alt),
        "info": {
            "TLOD": (25.0,),
            "POPAF": (6.0,),
            "ECNT": 1,
            "MBQ": (30, 30),
            "MMQ": (60, 60),
            "MPOS": (25,),
            "DP": 60,
        },
        "tumor": {"GT": (0, 1), "AD": (40, 20), "AF": (0.33,), "SB": (20, 20, 10, 10)},
        "normal": {"GT": (0, 0), "AD": (40, 0), "AF": (0.0,), "SB": (20, 20, 0, 0)},
    }
    for key, value in overrides.items():
        section, _, field = key.partition("__")
        call[section][field] = value
    return call


def _toy_calls() -> List[Dict[str, Any]]:
    return [
        _call(1_000),
        _call(2_000, "C", "G"),
        _call(3_000, "G", "A", info__TLOD=(1.2,)),  # weak evidence
        _call(4_000, "T", "C", info__MBQ=(30, 10)),  # low alt base quality
        # low alt base quality; shares a haplotype with the call at 5020
        _call(5_000, info__MBQ=(30, 12), tumor__PGT="0|1", tumor__PID=_PHASE_ID),
        _call(5_020, "C", "T", tumor__PGT="0|1", tumor__PID=_PHASE_ID),
        _call(6_000, "G", "T", info__MMQ=(60, 15)),  # low mapping quality
        _call(7_000, "T", "G", tumor__SB=(20, 20, 20, 0)),  # one-strand alt evidence
        _call(8_000, "A", "G", info__PON=True),
        _call(9_000, "C", "A", info__ECNT=4),  # clustered
        _call(10_000, "G", "C", info__MPOS=(0,)),  # alt at read ends
        # common population variant, heterozygous in both samples
        _call(
            11_000,
            "T",
            "A",
            info__POPAF=(0.3,),
            tumor__AD=(30, 30),
            tumor__AF=(0.5,),
            normal__AD=(30, 30),
            normal__AF=(0.5,),
        ),
        _call(12_000, "AT", "A", info__TLOD=(18.0,)),  # deletion
        _call(13_000, "C", "CTT", info__TLOD=(14.0,)),  # insertion
        _call(14_000, "G", "A"),
        _call(15_000, "T", "C", info__TLOD=(40.0,), tumor__AD=(30, 30), tumor__AF=(0.5,)),
    ]


def _header() -> pysam.VariantHeader:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_meta(TUMOR_SAMPLE_HEADER_KEY, TUMOR)
    header.add_meta(NORMAL_SAMPLE_HEADER_KEY, NORMAL)
    header.add_sample(TUMOR)
    header.add_sample(NORMAL)
    header.contigs.add(CONTIG, length=CONTIG_LENGTH)

    header.info.add("TLOD", "A", "Float", "Log 10 likelihood ratio score of variant existing versus not existing")
    header.info.add("POPAF", "A", "Float", "negative log 10 population allele frequencies of alt alleles")
    header.info.add("ECNT", 1, "Integer", "Number of events in this haplotype")
    header.info.add("MBQ", "R", "Integer", "median base quality by allele")
    header.info.add("MMQ", "R", "Integer", "median mapping quality by allele")
    header.info.add("MPOS", "A", "Integer", "median distance from end of read")
    header.info.add("DP", 1, "Integer", "Approximate read depth")
    header.info.add("PON", 0, "Flag", "site found in panel of normals")

    header.formats.add("GT", 1, "String", "Genotype")
    header.formats.add("AD", "R", "Integer", "Allelic depths for the ref and alt alleles")
    header.formats.add("AF", "A", "Float", "Allele fractions of alternate alleles in the tumor")
    header.formats.add("SB", 4, "Integer", "Per-sample component statistics for strand bias")
    header.formats.add("PGT", 1, "String", "Physical phasing haplotype information")
    header.formats.add("PID", 1, "String", "Physical phasing ID information")
    return header


def _write_vcf(path: Path) -> int:
    header = _header()
    n = 0
    with pysam.VariantFile(str(path), "w", header=header) as vcf:
        for call in _toy_calls():
            ref = call["alleles"][0]
            rec = vcf.new_record(
                contig=CONTIG,
                start=call["pos"] - 1,
                stop=call["pos"] - 1 + len(ref),
                alleles=call["alleles"],
            )
            for key, value in call["info"].items():
                rec.info[key] = value
            for sample, fields in ((TUMOR, call["tumor"]), (NORMAL, call["normal"])):
                for key, value in fields.items():
                    rec.samples[sample][key] = value
            vcf.write(rec)
            n += 1
    return n


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny tumor/normal call set with the tables a filtering run reads.

    The outputs include:
    - calls.vcf.gz (+ .tbi): real somatic calls mixed with typical artifacts
    - mutect.stats: callable-site count
    - contamination.table: per-sample contamination for the tumor

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    vcf_path = outdir_p / "calls.vcf"
    n_records = _write_vcf(vcf_path)

    vcf_gz = outdir_p / "calls.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)

    stats_path = outdir_p / "mutect.stats"
    stats_path.write_text(f"statistic\tvalue\ncallable\t{CALLABLE_SITES}\n", encoding="utf-8")

    contamination_path = outdir_p / "contamination.table"
    contamination_path.write_text(
        f"sample\tcontamination\terror\n{TUMOR}\t0.01\t0.002\n", encoding="utf-8"
    )

    summary = {
        "calls_vcf": str(vcf_gz),
        "stats": str(stats_path),
        "contamination_table": str(contamination_path),
        "records": str(n_records),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
