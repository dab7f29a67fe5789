from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

import numpy as np

PHASING_GT_KEY = "PGT"
PHASING_ID_KEY = "PID"


class MissingEvidenceError(KeyError):
    """Raised when a record lacks an attribute an estimator needs."""


class VariantType(str, Enum):
    SNV = "snv"
    INDEL = "indel"


def _as_float_array(value: Any) -> np.ndarray:
    if isinstance(value, (list, tuple)):
        return np.asarray([np.nan if v is None else v for v in value], dtype=float)
    return np.asarray([value], dtype=float)


@dataclass(frozen=True)
class Genotype:
    """One sample's call at a record.

    Attributes
    ----------
    sample:
        Sample name as present in the VCF header.
    fields:
        FORMAT values for this sample; missing values are simply absent.
    """

    sample: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def has(self, key: str) -> bool:
        return key in self.fields and self.fields[key] is not None

    def float_array(self, key: str) -> np.ndarray:
        if not self.has(key):
            raise MissingEvidenceError(f"Genotype {self.sample} has no {key} field")
        return _as_float_array(self.fields[key])

    def int_array(self, key: str) -> np.ndarray:
        return np.nan_to_num(self.float_array(key)).astype(np.int64)

    @property
    def allele_depths(self) -> Optional[np.ndarray]:
        if not self.has("AD"):
            return None
        return self.int_array("AD")

    @property
    def has_phase_info(self) -> bool:
        return self.has(PHASING_GT_KEY) and self.has(PHASING_ID_KEY)

    @property
    def phase_id(self) -> str:
        return str(self.fields.get(PHASING_ID_KEY, ""))

    @property
    def phased_genotype(self) -> str:
        return str(self.fields.get(PHASING_GT_KEY, ""))


@dataclass(frozen=True)
class VariantRecord:
    """An immutable candidate variant with INFO evidence and per-sample genotypes.

    Coordinates follow the VCF: ``position`` is 1-based.
    """

    contig: str
    position: int
    ref: str
    alts: Tuple[str, ...]
    info: Mapping[str, Any] = field(default_factory=dict)
    genotypes: Tuple[Genotype, ...] = ()
    record_id: Optional[str] = None

    @property
    def variant_type(self) -> VariantType:
        alleles = (self.ref,) + tuple(self.alts)
        if all(len(a) == 1 for a in alleles):
            return VariantType.SNV
        return VariantType.INDEL

    @property
    def is_snv(self) -> bool:
        return self.variant_type is VariantType.SNV

    @property
    def max_indel_length(self) -> int:
        return max((abs(len(a) - len(self.ref)) for a in self.alts), default=0)

    def has_attribute(self, key: str) -> bool:
        return key in self.info and self.info[key] is not None

    def attribute(self, key: str) -> Any:
        if not self.has_attribute(key):
            raise MissingEvidenceError(f"Record {self.label} has no INFO/{key}")
        return self.info[key]

    def attribute_array(self, key: str) -> np.ndarray:
        return _as_float_array(self.attribute(key))

    def has_flag(self, key: str) -> bool:
        return bool(self.info.get(key, False))

    @property
    def label(self) -> str:
        return self.record_id or f"{self.contig}:{self.position}:{self.ref}:{','.join(self.alts)}"


@dataclass(frozen=True)
class FilteredRecord:
    """Decision-pass output derived from a record; the record itself is untouched."""

    record: VariantRecord
    artifact_probability: float
    rejected: bool
    filters: Tuple[str, ...] = ()  # reasons; may be empty even when rejected
    annotations: Mapping[str, int] = field(default_factory=dict)
