from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib.pyplot as plt

from .engine import FilterStats

logger = logging.getLogger(__name__)


def plot_probability_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    threshold: float,
    out_png: str | Path,
    title: str = "Combined artifact probability",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.axvline(threshold, color="red", linestyle="--", label=f"threshold = {threshold:.3g}")
    plt.xlabel("P(artifact)")
    plt.ylabel("Record count")
    plt.title(title)
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_decision_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Filtering decisions",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["PASS", "Filtered"]
    values = [int(counts.get("records_pass", 0)), int(counts.get("records_filtered", 0))]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Record count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_filter_stats(
    *,
    filter_stats: Sequence[FilterStats],
    out_png: str | Path,
    title: str = "Expected errors attributable to each filter",
) -> None:
    """Grouped bars of expected false positives and false negatives per filter."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    names = [fs.filter_name for fs in filter_stats]
    fps = [fs.false_positive_count for fs in filter_stats]
    fns = [fs.false_negative_count for fs in filter_stats]
    xs = list(range(len(names)))
    width = 0.4

    plt.figure()
    plt.bar([x - width / 2 for x in xs], fps, width=width, label="False positives")
    plt.bar([x + width / 2 for x in xs], fns, width=width, label="False negatives")
    plt.ylabel("Expected count")
    plt.title(title)
    plt.xticks(xs, names, rotation=30, ha="right")
    if names:
        plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
