"""Small tab-separated tables consumed and produced alongside a filtering run.

- Mutect-style stats (``statistic<TAB>value``); the ``callable`` row gives the
  number of callable sites used to re-estimate somatic priors.
- Contamination tables (``sample<TAB>contamination<TAB>error``), one per sample.
- The filtering summary written at the end of a run.
"""

from __future__ import annotations

import csv
import logging
import math
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from .engine import FilteringSummary

logger = logging.getLogger(__name__)

CALLABLE_SITES_NAME = "callable"

_FILTER_STATS_COLUMNS = [
    "filter",
    "false_positive_count",
    "false_discovery_rate",
    "false_negative_count",
    "false_negative_rate",
]


def _data_rows(path: str | Path) -> Iterable[Dict[str, str]]:
    with open(path, "rt", encoding="utf-8", newline="") as fh:
        lines = (line for line in fh if line.strip() and not line.startswith("#"))
        yield from csv.DictReader(lines, delimiter="\t")


def read_mutect_stats(path: str | Path) -> Dict[str, float]:
    stats: Dict[str, float] = {}
    for row in _data_rows(path):
        try:
            stats[row["statistic"]] = float(row["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed stats table {path}: {row}") from e
    return stats


def read_callable_sites(path: str | Path) -> int:
    stats = read_mutect_stats(path)
    if CALLABLE_SITES_NAME not in stats:
        raise ValueError(f"Stats table {path} has no '{CALLABLE_SITES_NAME}' row")
    callable_sites = int(round(stats[CALLABLE_SITES_NAME]))
    logger.info("Total callable sites from %s: %d", path, callable_sites)
    return callable_sites


def read_contamination_table(path: str | Path) -> Tuple[str, float]:
    """Return (sample, contamination) from the first data row."""
    for row in _data_rows(path):
        try:
            return row["sample"], float(row["contamination"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed contamination table {path}: {row}") from e
    raise ValueError(f"Contamination table {path} has no data rows")


def read_contamination_tables(paths: Iterable[str | Path]) -> Dict[str, float]:
    return dict(read_contamination_table(p) for p in paths)


def _fmt(x: float) -> str:
    return "NaN" if math.isnan(x) else f"{x:.6g}"


def write_filtering_stats(path: str | Path, summary: FilteringSummary) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wt", encoding="utf-8", newline="") as fh:
        fh.write(f"#threshold={summary.threshold:.6g}\n")
        fh.write(f"#pass_count={summary.pass_count}\n")
        fh.write(f"#expected_true_positives={summary.true_positives:.6g}\n")
        fh.write(f"#expected_false_positives={summary.false_positives:.6g}\n")
        fh.write(f"#expected_false_negatives={summary.false_negatives:.6g}\n")
        writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
        writer.writerow(_FILTER_STATS_COLUMNS)
        for fs in summary.filter_stats:
            writer.writerow(
                [
                    fs.filter_name,
                    _fmt(fs.false_positive_count),
                    _fmt(fs.false_discovery_rate),
                    _fmt(fs.false_negative_count),
                    _fmt(fs.false_negative_rate),
                ]
            )
    return path


def optional_callable_sites(path: Optional[str | Path]) -> Optional[int]:
    return None if path is None else read_callable_sites(path)
