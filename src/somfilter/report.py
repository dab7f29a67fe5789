from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

from .engine import FilteringSummary

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>SomFilter Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>SomFilter Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>VCF</th><td><code>{{ vcf_path }}</code></td></tr>
      <tr><th>Normal samples</th><td>{{ normal_samples | join(", ") if normal_samples else "none" }}</td></tr>
      <tr><th>Callable sites</th><td>{{ callable_sites if callable_sites is not none else "not provided" }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Model</h3>
    <table>
      <tr><th>Threshold strategy</th><td>{{ strategy }}</td></tr>
      <tr><th>Learning passes</th><td>{{ num_learning_passes }}</td></tr>
      <tr><th>Artifact probability threshold</th><td>{{ "%.4g" | format(summary.threshold) }}</td></tr>
      <tr><th>Prior of artifact vs variant</th><td>{{ "%.4g" | format(learned.prior_prob_artifact_vs_variant) }}</td></tr>
      <tr><th>log10 prior somatic SNV</th><td>{{ "%.3f" | format(learned.log10_prior_somatic_snv) }}</td></tr>
      <tr><th>log10 prior somatic indel</th><td>{{ "%.3f" | format(learned.log10_prior_somatic_indel) }}</td></tr>
    </table>
  </div>
</div>

<h2>Decisions</h2>
<table>
  <tr><th>Records</th><td>{{ counts.records_total }}</td></tr>
  <tr><th>PASS</th><td>{{ counts.records_pass }}</td></tr>
  <tr><th>Filtered</th><td>{{ counts.records_filtered }}</td></tr>
  <tr><th>Expected true positives</th><td>{{ "%.2f" | format(summary.true_positives) }}</td></tr>
  <tr><th>Expected false positives</th><td>{{ "%.2f" | format(summary.false_positives) }}</td></tr>
  <tr><th>Expected false negatives</th><td>{{ "%.2f" | format(summary.false_negatives) }}</td></tr>
</table>

<h2>Per-filter errors</h2>
{% if summary.filter_stats %}
<table>
  <tr><th>Filter</th><th>FP</th><th>FDR</th><th>FN</th><th>FNR</th></tr>
  {% for fs in summary.filter_stats %}
  <tr>
    <td><code>{{ fs.filter_name }}</code></td>
    <td>{{ "%.3f" | format(fs.false_positive_count) }}</td>
    <td>{{ "%.4f" | format(fs.false_discovery_rate) }}</td>
    <td>{{ "%.3f" | format(fs.false_negative_count) }}</td>
    <td>{{ "%.4f" | format(fs.false_negative_rate) }}</td>
  </tr>
  {% endfor %}
</table>
{% else %}
<p>No filter contributed expected false positives or false negatives.</p>
{% endif %}

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Artifact probability</h3>
    <img src="{{ plots.probability_hist }}" alt="artifact probability histogram">
  </div>
  <div class="card">
    <h3>Decisions</h3>
    <img src="{{ plots.decision_counts }}" alt="decision counts">
  </div>
</div>
<div class="card" style="margin-top:16px;">
  <h3>Per-filter errors</h3>
  <img src="{{ plots.filter_stats }}" alt="per-filter errors">
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ output_vcf }}</code> (filtered VCF)</li>
  <li><code>filtering_stats.tsv</code> (per-filter summary)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Counts are expectations: each record contributes its probability mass, not a hard 0/1.</li>
  <li>A filter's FN is the expected number of real variants it flagged; FP is the artifact mass it let through.</li>
  <li>Records rejected with no single filter above the threshold carry the <code>artifact</code> FILTER.</li>
</ul>

<hr>
<p class="small">SomFilter {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    summary: FilteringSummary,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        vcf_path=run.get("vcf_path"),
        output_vcf=run.get("output_vcf"),
        normal_samples=run.get("normal_samples", []),
        callable_sites=run.get("total_callable_sites"),
        strategy=run.get("threshold_strategy"),
        num_learning_passes=run.get("num_learning_passes"),
        learned=run.get("learned", {}),
        counts=run.get("counts", {}),
        summary=summary,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.debug("Rendered report to %s", out_path)
    return out_path
