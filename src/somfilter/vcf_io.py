from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import pysam
from tqdm import tqdm

from .engine import FilteringEngine
from .filters import ArtifactEstimator
from .models import FilteredRecord, Genotype, VariantRecord

logger = logging.getLogger(__name__)

NORMAL_SAMPLE_HEADER_KEY = "normal_sample"
TUMOR_SAMPLE_HEADER_KEY = "tumor_sample"
PASS_FILTER = "PASS"
# rejected by the combined probability although no single estimator clears the threshold
COMBINED_FILTER_NAME = "artifact"
COMBINED_FILTER_DESCRIPTION = "Combined artifact probability exceeds threshold"


def normal_samples_from_header(header: pysam.VariantHeader) -> Set[str]:
    """Samples flagged as normal via ``##normal_sample=<name>`` meta lines."""
    return {
        str(rec.value)
        for rec in header.records
        if rec.key == NORMAL_SAMPLE_HEADER_KEY and rec.value is not None
    }


def _plain(value: Any) -> Any:
    if isinstance(value, tuple):
        if all(v is None for v in value):
            return None
        return tuple(value)
    return value


def record_from_pysam(rec: pysam.VariantRecord) -> VariantRecord:
    info: Dict[str, Any] = {}
    for key, value in rec.info.items():
        value = _plain(value)
        if value is not None:
            info[key] = value

    genotypes: List[Genotype] = []
    for sample_name, sample in rec.samples.items():
        fields: Dict[str, Any] = {}
        for key, value in sample.items():
            value = _plain(value)
            if value is not None:
                fields[key] = value
        genotypes.append(Genotype(sample=str(sample_name), fields=fields))

    return VariantRecord(
        contig=str(rec.contig),
        position=int(rec.pos),
        ref=str(rec.ref),
        alts=tuple(rec.alts or ()),
        info=info,
        genotypes=tuple(genotypes),
        record_id=rec.id,
    )


class VcfRecordSource:
    """Re-iterable view of a VCF; every iteration re-opens and re-scans the file."""

    def __init__(self, vcf_path: str | Path) -> None:
        self.vcf_path = str(vcf_path)
        with pysam.VariantFile(self.vcf_path) as vcf:
            self.header = vcf.header.copy()
            self.samples = list(vcf.header.samples)

    @property
    def normal_samples(self) -> Set[str]:
        return normal_samples_from_header(self.header)

    def iter_raw(self) -> Iterator[Tuple[pysam.VariantRecord, VariantRecord]]:
        with pysam.VariantFile(self.vcf_path) as vcf:
            for rec in vcf:
                yield rec, record_from_pysam(rec)

    def __iter__(self) -> Iterator[VariantRecord]:
        for _, record in self.iter_raw():
            yield record


def build_output_header(
    header: pysam.VariantHeader,
    estimators: Iterable[ArtifactEstimator],
    *,
    source: Optional[str] = None,
) -> pysam.VariantHeader:
    """Input header plus FILTER lines per estimator and INFO lines per Phred annotation."""
    out = header.copy()
    for est in estimators:
        if est.filter_name not in out.filters:
            out.filters.add(est.filter_name, None, None, est.description or est.filter_name)
        annotation = est.phred_scaled_posterior_annotation_name()
        if annotation is not None and annotation not in out.info:
            out.info.add(annotation, 1, "Integer", est.annotation_description or annotation)
    if COMBINED_FILTER_NAME not in out.filters:
        out.filters.add(COMBINED_FILTER_NAME, None, None, COMBINED_FILTER_DESCRIPTION)
    if source:
        out.add_meta("source", source)
    return out


def apply_decision(rec: pysam.VariantRecord, decision: FilteredRecord) -> None:
    """Write a decision onto a pysam record already translated to the output header."""
    rec.filter.clear()
    if decision.filters:
        for name in decision.filters:
            rec.filter.add(name)
    elif decision.rejected:
        rec.filter.add(COMBINED_FILTER_NAME)
    else:
        rec.filter.add(PASS_FILTER)
    for key, value in decision.annotations.items():
        rec.info[key] = int(value)


def write_filtered_vcf(
    source: VcfRecordSource,
    engine: FilteringEngine,
    out_path: str | Path,
    *,
    progress: bool = True,
    header_source: Optional[str] = None,
) -> Dict[str, int]:
    """Run the decision pass over ``source`` and write the filtered VCF.

    Returns simple counts of records written, passed and filtered.
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    header = build_output_header(source.header, engine.estimators, source=header_source)
    mode = "wz" if out_path.suffix == ".gz" else "w"

    counts = {"records_total": 0, "records_pass": 0, "records_filtered": 0}

    engine.start_decision_pass()
    it: Iterable[Tuple[pysam.VariantRecord, VariantRecord]] = source.iter_raw()
    if progress:
        it = tqdm(it, unit="record", desc="Filtering")

    with pysam.VariantFile(str(out_path), mode, header=header) as out:
        for rec, record in it:
            decision = engine.apply_filters(record)
            rec.translate(out.header)
            apply_decision(rec, decision)
            out.write(rec)
            counts["records_total"] += 1
            if decision.rejected:
                counts["records_filtered"] += 1
            else:
                counts["records_pass"] += 1

    logger.info(
        "Wrote %s: %d records (%d PASS, %d filtered)",
        out_path,
        counts["records_total"],
        counts["records_pass"],
        counts["records_filtered"],
    )
    return counts
