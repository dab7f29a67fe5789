from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ConfigurationError, FilteringConfig, ThresholdStrategy
from .engine import FilteringEngine, run_learning_passes
from .plotting import plot_decision_counts, plot_filter_stats, plot_probability_hist
from .report import render_report
from .tables import optional_callable_sites, read_contamination_tables, write_filtering_stats
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .vcf_io import VcfRecordSource, write_filtered_vcf


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="somfilter",
        description=(
            "SomFilter: probabilistic artifact filtering for somatic variant calls. "
            "Learns priors and a decision threshold from the calls themselves, then "
            "writes a filtered VCF with per-filter reasons and Phred-scaled annotations."
        ),
    )
    p.add_argument("--version", action="version", version=f"somfilter {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny tumor/normal VCF plus stats and contamination tables.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # filter
    # -----------------
    f = sub.add_parser(
        "filter",
        help="Filter somatic calls in a VCF (.vcf/.vcf.gz).",
    )
    f.add_argument("--vcf", required=True, type=_path_exists, help="Unfiltered somatic VCF.")
    f.add_argument("--outdir", required=True, help="Output directory.")
    f.add_argument(
        "--output",
        default=None,
        help="Filtered VCF path (default: outdir/filtered.vcf.gz).",
    )
    f.add_argument(
        "--stats",
        default=None,
        type=_path_exists,
        help="Caller stats table with a 'callable' row; enables re-estimation of somatic priors.",
    )
    f.add_argument(
        "--contamination-table",
        nargs="+",
        default=[],
        type=_path_exists,
        help="One contamination table (sample, contamination, error) per tumor sample.",
    )
    f.add_argument(
        "--normal-sample",
        nargs="+",
        default=[],
        help="Normal sample name(s), in addition to ##normal_sample header lines.",
    )

    # Thresholding
    f.add_argument(
        "--threshold-strategy",
        choices=[s.value for s in ThresholdStrategy],
        default=ThresholdStrategy.OPTIMAL_F_SCORE.value,
        help="How the artifact probability threshold is chosen after each learning pass.",
    )
    f.add_argument("--posterior-threshold", type=float, default=0.1, help="Threshold for 'constant'.")
    f.add_argument(
        "--max-false-discovery-rate",
        type=float,
        default=0.05,
        help="Expected FDR bound for 'false_discovery_rate'.",
    )
    f.add_argument(
        "--f-score-beta",
        type=float,
        default=1.0,
        help="Relative weight of recall to precision for 'optimal_f_score'.",
    )
    f.add_argument("--num-learning-passes", type=int, default=2, help="Learning passes before filtering.")
    f.add_argument(
        "--initial-log10-prior-snv",
        type=float,
        default=-6.0,
        help="Initial log10 prior of a somatic SNV per site.",
    )
    f.add_argument(
        "--initial-log10-prior-indel",
        type=float,
        default=-7.0,
        help="Initial log10 prior of a somatic indel per site.",
    )
    f.add_argument(
        "--initial-prior-artifact",
        type=float,
        default=0.1,
        help="Initial prior probability of an artifact vs. a real variant.",
    )
    f.add_argument(
        "--mitochondria",
        action="store_true",
        help="Mitochondrial mode: replace germline/clustering filters with a low-average-quality filter.",
    )

    # Estimator parameters
    f.add_argument("--min-median-base-quality", type=int, default=20, help="Minimum alt median base quality.")
    f.add_argument(
        "--min-median-mapping-quality",
        type=int,
        default=30,
        help="Minimum median mapping quality.",
    )
    f.add_argument(
        "--long-indel-length",
        type=int,
        default=5,
        help="Indels at least this long are judged on ref mapping quality.",
    )
    f.add_argument(
        "--unique-alt-read-count",
        type=int,
        default=0,
        help="Filter when unique alt reads are at most this many.",
    )
    f.add_argument(
        "--min-reads-on-each-strand",
        type=int,
        default=0,
        help="Minimum alt reads required on each strand (0 disables).",
    )
    f.add_argument(
        "--min-median-read-position",
        type=int,
        default=1,
        help="Minimum median distance of the alt from read ends.",
    )
    f.add_argument(
        "--n-ratio",
        type=float,
        default=float("inf"),
        help="Filter when N count / alt count reaches this ratio (default: disabled).",
    )
    f.add_argument("--max-events-in-region", type=int, default=2, help="Maximum events per haplotype region.")
    f.add_argument(
        "--max-alt-allele-count",
        type=int,
        default=1,
        help="Maximum alt alleles passing the tumor LOD at a site.",
    )
    f.add_argument(
        "--tumor-lod-to-count-allele",
        type=float,
        default=3.0,
        help="Tumor LOD at which an alt allele counts towards --max-alt-allele-count.",
    )
    f.add_argument(
        "--distance-on-haplotype",
        type=int,
        default=100,
        help="Maximum distance to a filtered call on the same haplotype.",
    )
    f.add_argument(
        "--min-log10-odds-per-depth",
        type=float,
        default=0.0035,
        help="Minimum TLOD / DP in mitochondrial mode.",
    )
    f.add_argument(
        "--contamination-estimate",
        type=float,
        default=0.0,
        help="Contamination fraction for samples without a contamination table.",
    )

    # Outputs
    f.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    f.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    f.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "SomFilter quickstart (copy/paste):",
        "",
        "1) Tumor/normal calls with caller stats and contamination:",
        "   somfilter filter \\",
        "     --vcf unfiltered.vcf.gz \\",
        "     --stats unfiltered.vcf.gz.stats \\",
        "     --contamination-table tumor.contamination.table \\",
        "     --outdir results/",
        "   Outputs: results/filtered.vcf.gz, results/filtering_stats.tsv, results/report.html",
        "",
        "2) Tumor-only calls with a bounded false discovery rate:",
        "   somfilter filter \\",
        "     --vcf tumor_only.vcf.gz \\",
        "     --threshold-strategy false_discovery_rate \\",
        "     --max-false-discovery-rate 0.05 \\",
        "     --outdir tumor_only/",
        "",
        "3) Try it on toy data:",
        "   somfilter make-toy-data --outdir toy/",
        "   somfilter filter --vcf toy/calls.vcf.gz --stats toy/mutect.stats \\",
        "     --contamination-table toy/contamination.table --outdir toy/results/",
        "",
        "Tip: use --dry-run to validate inputs and print the planned outputs.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _config_from_args(args: argparse.Namespace) -> FilteringConfig:
    return FilteringConfig(
        threshold_strategy=ThresholdStrategy.parse(args.threshold_strategy),
        posterior_threshold=float(args.posterior_threshold),
        max_false_discovery_rate=float(args.max_false_discovery_rate),
        f_score_beta=float(args.f_score_beta),
        num_learning_passes=int(args.num_learning_passes),
        log10_prior_somatic_snv=float(args.initial_log10_prior_snv),
        log10_prior_somatic_indel=float(args.initial_log10_prior_indel),
        initial_prior_artifact_vs_variant=float(args.initial_prior_artifact),
        mitochondria=bool(args.mitochondria),
        min_median_base_quality=int(args.min_median_base_quality),
        min_median_mapping_quality=int(args.min_median_mapping_quality),
        long_indel_length=int(args.long_indel_length),
        unique_alt_read_count=int(args.unique_alt_read_count),
        min_reads_on_each_strand=int(args.min_reads_on_each_strand),
        min_median_read_position=int(args.min_median_read_position),
        n_ratio=float(args.n_ratio),
        max_events_in_region=int(args.max_events_in_region),
        num_alt_alleles_threshold=int(args.max_alt_allele_count),
        tumor_lod_to_count_allele=float(args.tumor_lod_to_count_allele),
        max_distance_to_filtered_call_on_same_haplotype=int(args.distance_on_haplotype),
        min_log10_odds_divided_by_depth=float(args.min_log10_odds_per_depth),
        contamination_estimate=float(args.contamination_estimate),
        contamination_by_sample=read_contamination_tables(args.contamination_table),
    )


def cmd_filter(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "filter.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("somfilter")
    logger.info("somfilter %s", __version__)

    out_vcf = Path(args.output).expanduser().resolve() if args.output else outdir / "filtered.vcf.gz"

    try:
        config = _config_from_args(args)
        source = VcfRecordSource(args.vcf)
        normal_samples = source.normal_samples | set(args.normal_sample)
        unknown = normal_samples - set(source.samples)
        if unknown:
            raise ConfigurationError(
                f"Normal sample(s) not in VCF: {', '.join(sorted(unknown))}. "
                f"VCF samples: {', '.join(source.samples)}"
            )
        total_callable_sites = optional_callable_sites(args.stats)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Samples: {', '.join(source.samples)}")
            print(f"Normal samples: {', '.join(sorted(normal_samples)) or 'none'}")
            print(f"Threshold strategy: {config.threshold_strategy.value}")
            print("Planned outputs:")
            print(f"  filtered VCF -> {out_vcf}")
            print(f"  filtering_stats.tsv -> {outdir / 'filtering_stats.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)

        engine = FilteringEngine(
            config,
            normal_samples=normal_samples,
            total_callable_sites=total_callable_sites,
        )
        logger.info("Estimators: %s", ", ".join(e.filter_name for e in engine.estimators))

        run_learning_passes(engine, source, progress=True)
        counts = write_filtered_vcf(
            source,
            engine,
            out_vcf,
            progress=True,
            header_source=f"somfilter {__version__}",
        )
        summary = engine.summary()

        stats_path = write_filtering_stats(outdir / "filtering_stats.tsv", summary)
        logger.info("Filtering stats written: %s", stats_path)

        state = engine.state
        run = {
            "vcf_path": str(args.vcf),
            "output_vcf": str(out_vcf),
            "normal_samples": sorted(normal_samples),
            "total_callable_sites": total_callable_sites,
            "threshold_strategy": config.threshold_strategy.value,
            "num_learning_passes": config.num_learning_passes,
            "learned": {
                "prior_prob_artifact_vs_variant": state.prior_prob_artifact_vs_variant,
                "log10_prior_somatic_snv": state.log10_prior_somatic_snv,
                "log10_prior_somatic_indel": state.log10_prior_somatic_indel,
                "artifact_probability_threshold": state.artifact_probability_threshold,
            },
            "counts": counts,
        }
        write_json(outdir / "summary.json", {**run, "summary": summary.to_dict(), "version": __version__})

        if not args.no_report:
            plots_dir = outdir / "plots"
            plots_dir.mkdir(parents=True, exist_ok=True)

            probability_png = plots_dir / "probability_hist.png"
            decisions_png = plots_dir / "decision_counts.png"
            filter_stats_png = plots_dir / "filter_stats.png"

            plot_probability_hist(
                bin_edges=summary.probability_hist["bin_edges"],
                counts=summary.probability_hist["counts"],
                threshold=summary.threshold,
                out_png=probability_png,
            )
            plot_decision_counts(counts=counts, out_png=decisions_png)
            plot_filter_stats(filter_stats=summary.filter_stats, out_png=filter_stats_png)

            plots_rel = {
                "probability_hist": str(Path("plots") / probability_png.name),
                "decision_counts": str(Path("plots") / decisions_png.name),
                "filter_stats": str(Path("plots") / filter_stats_png.name),
            }

            report_path = render_report(
                outdir=outdir,
                version=__version__,
                run=run,
                summary=summary,
                plots=plots_rel,
            )
            logger.info("Report written: %s", report_path)

        print(str(out_vcf))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "filter":
        return cmd_filter(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
