from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from termscore.compare import compare, parse_selection, selector_of
from termscore.env import data_dir, load_dotenv
from termscore.metrics import load_metric_definitions, series_paths
from termscore.normalize import normalize_metric
from termscore.scoreboard import write_scorecard_md
from termscore.series import load_series_files, write_series_json
from termscore.site import write_comparison_json
from termscore.terms import load_registry
from termscore.validate import validate_all

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = Path("spec/administrations_v1.yaml")
DEFAULT_METRICS = Path("spec/metrics_v1.yaml")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="termscore", description="Compare economic metrics across presidential terms and parties.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    normalize = sub.add_parser("normalize", help="Build per-metric annual series JSON from raw observation CSVs.")
    normalize.add_argument("--spec", type=Path, default=DEFAULT_METRICS, help="Metric registry spec YAML.")
    normalize.add_argument("--metrics", nargs="*", default=None, help="Only normalize these metric ids.")
    normalize.add_argument("--base-dir", type=Path, default=Path("."), help="Root that relative recipe input paths resolve against.")
    normalize.add_argument("--series-dir", type=Path, default=None, help="Output directory (default: $TERMSCORE_DATA_DIR/series).")
    normalize.add_argument("--dotenv", type=Path, default=Path(".env"), help="Optional .env file to load into env vars.")

    cmp = sub.add_parser("compare", help="Compare two selections (administration id, party-D or party-R).")
    cmp.add_argument("a", help="Selection A, e.g. obama-1 or party-D.")
    cmp.add_argument("b", help="Selection B, e.g. trump-1 or party-R.")
    cmp.add_argument("--spec", type=Path, default=DEFAULT_METRICS, help="Metric registry spec YAML.")
    cmp.add_argument("--registry", type=Path, default=DEFAULT_REGISTRY, help="Administration registry YAML.")
    cmp.add_argument("--series-dir", type=Path, default=None, help="Series directory (default: $TERMSCORE_DATA_DIR/series).")
    cmp.add_argument("--output-md", type=Path, default=None, help="Scorecard markdown (default: reports/compare_<a>_vs_<b>.md).")
    cmp.add_argument("--output-json", type=Path, default=None, help="Optional JSON payload for the site.")
    cmp.add_argument("--dotenv", type=Path, default=Path(".env"), help="Optional .env file to load into env vars.")

    validate = sub.add_parser("validate", help="Check the registries and series files.")
    validate.add_argument("--spec", type=Path, default=DEFAULT_METRICS, help="Metric registry spec YAML.")
    validate.add_argument("--registry", type=Path, default=DEFAULT_REGISTRY, help="Administration registry YAML.")
    validate.add_argument("--series-dir", type=Path, default=None, help="Series directory (default: $TERMSCORE_DATA_DIR/series).")
    validate.add_argument("--skip-series", action="store_true", help="Only check the YAML registries.")
    validate.add_argument("--dotenv", type=Path, default=Path(".env"), help="Optional .env file to load into env vars.")

    terms = sub.add_parser("terms", help="List the administration registry.")
    terms.add_argument("--registry", type=Path, default=DEFAULT_REGISTRY, help="Administration registry YAML.")
    terms.add_argument("--dotenv", type=Path, default=Path(".env"), help="Optional .env file to load into env vars.")

    return p.parse_args(argv)


def _series_dir(arg: Path | None) -> Path:
    return arg if arg is not None else data_dir() / "series"


def _run_normalize(args: argparse.Namespace) -> int:
    series_dir = _series_dir(args.series_dir)
    metrics = load_metric_definitions(args.spec, series_dir=series_dir)
    only = set(args.metrics) if args.metrics else None
    if only:
        unknown = sorted(only - {m.id for m in metrics})
        if unknown:
            raise ValueError(f"Unknown metric id(s): {unknown}")

    failed: list[str] = []
    for m in metrics:
        if only and m.id not in only:
            continue
        if m.normalize is None:
            logger.info("%s: no normalize recipe; skipping", m.id)
            continue
        try:
            series = normalize_metric(m, base_dir=args.base_dir)
        except FileNotFoundError as exc:
            # Unavailable source: the series stays absent and comparisons show blanks.
            logger.warning("%s: %s", m.id, exc)
            failed.append(m.id)
            continue
        assert m.series_path is not None
        write_series_json(series, m.series_path)
        print(f"{m.id}: {series.meta.coverage_start}-{series.meta.coverage_end} -> {m.series_path}")

    if failed:
        print(f"normalize: {len(failed)} metric(s) unavailable: {', '.join(failed)}")
        return 1
    return 0


def _run_compare(args: argparse.Namespace) -> int:
    series_dir = _series_dir(args.series_dir)
    registry = load_registry(args.registry)
    metrics = load_metric_definitions(args.spec, series_dir=series_dir)
    all_series = load_series_files(series_paths(metrics))

    sel_a = parse_selection(args.a)
    sel_b = parse_selection(args.b)
    report = compare(sel_a, sel_b, all_series, registry=registry, metrics=metrics)

    out_md = args.output_md or Path("reports") / f"compare_{selector_of(sel_a)}_vs_{selector_of(sel_b)}.md"
    write_scorecard_md(report, out_md)
    if args.output_json is not None:
        write_comparison_json(report, args.output_json)

    sc = report.scorecard
    if sc.overall_winner == "tie":
        verdict = "tie"
    else:
        verdict = report.heading_a if sc.overall_winner == "A" else report.heading_b
    print(f"{report.heading_a} {sc.wins_a} - {sc.wins_b} {report.heading_b}: {verdict}")
    print(f"wrote {out_md}")
    return 0


def _run_terms(args: argparse.Namespace) -> int:
    registry = load_registry(args.registry)
    for t in registry.terms:
        print(f"{t.term_id}\t{t.party}\t{t.start_year}-{t.end_year}\t{t.label}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    load_dotenv(args.dotenv, override=False)

    try:
        if args.cmd == "normalize":
            return _run_normalize(args)

        if args.cmd == "compare":
            return _run_compare(args)

        if args.cmd == "validate":
            status, out = validate_all(
                registry_path=args.registry,
                metrics_path=args.spec,
                series_dir=_series_dir(args.series_dir),
                check_series=not bool(args.skip_series),
            )
            print(out)
            return status

        if args.cmd == "terms":
            return _run_terms(args)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 2

    raise RuntimeError(f"unhandled cmd={args.cmd!r}")


if __name__ == "__main__":
    sys.exit(main())
