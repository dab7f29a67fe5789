from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Sequence

import numpy as np

logger = logging.getLogger(__name__)

MIN_PHRED_QUAL = 1
MAX_PHRED_QUAL = 93
LN10 = math.log(10.0)


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def sigmoid(x: float) -> float:
    # numerically stable sigmoid
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


def error_prob_to_phred(p: float, *, max_qual: int = MAX_PHRED_QUAL) -> int:
    """Phred-scale an error probability, rounded and bounded to [1, ``max_qual``] like SAM base qualities."""
    if p <= 0.0:
        return max_qual
    q = round(-10.0 * math.log10(p))
    return int(clamp(q, MIN_PHRED_QUAL, max_qual))


def log10_one_minus_pow10(log10_p: float) -> float:
    """log10(1 - 10**log10_p) for log10_p <= 0."""
    if log10_p >= 0.0:
        return float("-inf")
    return math.log1p(-(10.0**log10_p)) / LN10


def posterior_probability_of_error(log10_odds_real_vs_error: float, log10_prior_of_real: float) -> float:
    """Posterior probability that a call is an error given log10 odds and a log10 prior of it being real."""
    log10_real = log10_odds_real_vs_error + log10_prior_of_real
    log10_error = log10_one_minus_pow10(log10_prior_of_real)
    return sigmoid((log10_error - log10_real) * LN10)


def binomial_probability(n: int, k: int, p: float) -> float:
    """Binomial pmf evaluated in log space to stay finite at high depth."""
    if k < 0 or k > n:
        return 0.0
    p = clamp(p, 0.0, 1.0)
    if p == 0.0:
        return 1.0 if k == 0 else 0.0
    if p == 1.0:
        return 1.0 if k == n else 0.0
    log_coeff = math.lgamma(n + 1) - math.lgamma(k + 1) - math.lgamma(n - k + 1)
    return math.exp(log_coeff + k * math.log(p) + (n - k) * math.log1p(-p))


def weighted_median(values: Sequence[float], weights: Sequence[float]) -> float:
    """Lowest value at which the cumulative weight reaches half the total; 0 if no weight."""
    if len(values) == 0:
        return 0.0
    vals = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    total = float(w.sum())
    order = np.argsort(vals, kind="stable")
    cumulative = np.cumsum(w[order])
    hits = np.nonzero(cumulative * 2.0 >= total)[0]
    if total <= 0.0 or len(hits) == 0:
        return 0.0
    return float(vals[order][hits[0]])


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)

