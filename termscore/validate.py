from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from termscore.metrics import MetricDefinition, load_metric_definitions
from termscore.series import SeriesFormatError, coverage_of, load_series_json
from termscore.spec import load_spec
from termscore.terms import PARTIES, TERM_SLOTS

# Stored YoY is rounded to 2 dp; allow for that when recomputing it.
YOY_TOLERANCE = 0.011


@dataclass(frozen=True)
class ValidationIssue:
    level: str  # "ERROR" or "WARN"
    message: str


def _as_year_range(raw: object) -> tuple[int, int] | None:
    if isinstance(raw, dict):
        raw = [raw.get("start"), raw.get("end")]
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return None
    try:
        return int(raw[0]), int(raw[1])
    except (TypeError, ValueError):
        return None


def validate_registry(path: Path) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if not path.exists():
        return [ValidationIssue("ERROR", f"missing administration registry: {path}")]

    spec = load_spec(path)
    administrations = spec.get("administrations") or []
    term_years = spec.get("term_years") or {}
    if not isinstance(administrations, list) or not isinstance(term_years, dict):
        return [ValidationIssue("ERROR", f"{path.name}: administrations must be a list and term_years a mapping")]
    if not administrations:
        return [ValidationIssue("ERROR", f"{path.name}: no administrations")]

    seen: set[str] = set()
    spans: list[tuple[int, int, str]] = []
    for entry in administrations:
        if not isinstance(entry, dict):
            issues.append(ValidationIssue("ERROR", f"{path.name}: administration entry must be a mapping: {entry!r}"))
            continue
        term_id = str(entry.get("value") or "").strip()
        if not term_id:
            issues.append(ValidationIssue("ERROR", f"{path.name}: administration with blank value"))
            continue
        if term_id in seen:
            issues.append(ValidationIssue("ERROR", f"{path.name}: duplicate administration value={term_id!r}"))
        seen.add(term_id)

        party = str(entry.get("party") or "").strip()
        if party not in PARTIES:
            issues.append(ValidationIssue("ERROR", f"{path.name}: unexpected party={party!r} for {term_id!r}"))

        if term_id not in term_years:
            issues.append(ValidationIssue("WARN", f"{path.name}: {term_id!r} has no term_years entry (series will be empty)"))
            continue
        yr = _as_year_range(term_years[term_id])
        if yr is None:
            issues.append(ValidationIssue("ERROR", f"{path.name}: invalid term_years for {term_id!r}: {term_years[term_id]!r}"))
            continue
        s, e = yr
        if e < s or e - s >= TERM_SLOTS:
            issues.append(ValidationIssue("ERROR", f"{path.name}: term_years for {term_id!r} must span 1-{TERM_SLOTS} years: {s}..{e}"))
            continue
        spans.append((s, e, term_id))

    for term_id in sorted(set(term_years) - seen):
        issues.append(ValidationIssue("WARN", f"{path.name}: term_years entry {term_id!r} has no administration"))

    # Terms form a single timeline.
    spans_sorted = sorted(spans)
    for (s0, e0, id0), (s1, e1, id1) in zip(spans_sorted, spans_sorted[1:]):
        if s1 <= e0:
            issues.append(ValidationIssue("ERROR", f"{path.name}: overlapping terms: {id0} ({s0}..{e0}) overlaps {id1} ({s1}..{e1})"))
        elif s1 > e0 + 1:
            issues.append(ValidationIssue("WARN", f"{path.name}: gap between terms: {id0} ends {e0} then {id1} starts {s1}"))

    return issues


def validate_metric_spec(path: Path, *, series_dir: Path) -> tuple[list[ValidationIssue], tuple[MetricDefinition, ...]]:
    if not path.exists():
        return [ValidationIssue("ERROR", f"missing metric spec YAML: {path}")], ()
    try:
        metrics = load_metric_definitions(path, series_dir=series_dir)
    except ValueError as exc:
        return [ValidationIssue("ERROR", str(exc))], ()

    issues: list[ValidationIssue] = []
    if not metrics:
        issues.append(ValidationIssue("ERROR", f"{path.name}: no metrics defined"))
    for m in metrics:
        if m.normalize is None:
            issues.append(ValidationIssue("WARN", f"{path.name}: metric {m.id!r} has no normalize recipe"))
        elif not (m.normalize.get("inputs") or {}).get("main"):
            issues.append(ValidationIssue("ERROR", f"{path.name}: metric {m.id!r} normalize recipe has no inputs.main"))
    return issues, metrics


def validate_series_file(path: Path, *, metric_id: str) -> list[ValidationIssue]:
    if not path.exists():
        return [ValidationIssue("WARN", f"series {metric_id!r}: missing file {path} (comparisons will be blank)")]
    try:
        series = load_series_json(path)
    except SeriesFormatError as exc:
        return [ValidationIssue("ERROR", f"series {metric_id!r}: {exc}")]

    issues: list[ValidationIssue] = []
    if series.meta.id != metric_id:
        issues.append(ValidationIssue("WARN", f"series {metric_id!r}: meta.id={series.meta.id!r} does not match"))

    annual = series.annual_rows()
    if not annual:
        issues.append(ValidationIssue("WARN", f"series {metric_id!r}: no annual rows"))
        return issues

    years = [r.year for r in annual]
    missing = sorted(set(range(years[0], years[-1] + 1)) - set(years))
    if missing:
        issues.append(ValidationIssue("WARN", f"series {metric_id!r}: missing years {missing}"))

    start, end = coverage_of(series.rows)
    if (series.meta.coverage_start, series.meta.coverage_end) != (start, end):
        issues.append(
            ValidationIssue(
                "WARN",
                f"series {metric_id!r}: meta.coverage {series.meta.coverage_start}..{series.meta.coverage_end} "
                f"does not match data {start}..{end}",
            )
        )

    levels = {r.year: r.value for r in annual}
    bad_yoy: list[int] = []
    for r in annual:
        prev = levels.get(r.year - 1)
        if r.yoy is None or prev is None or prev == 0:
            continue
        expected = (r.value - prev) / prev * 100.0
        if abs(expected - r.yoy) > YOY_TOLERANCE * max(1.0, abs(expected)):
            bad_yoy.append(r.year)
    if bad_yoy:
        issues.append(ValidationIssue("WARN", f"series {metric_id!r}: yoy inconsistent with values for {bad_yoy}"))

    return issues


def _format_issues(issues: Iterable[ValidationIssue]) -> str:
    lines: list[str] = []
    for it in issues:
        lines.append(f"{it.level}: {it.message}")
    return "\n".join(lines)


def validate_all(
    *,
    registry_path: Path,
    metrics_path: Path,
    series_dir: Path,
    check_series: bool = True,
) -> tuple[int, str]:
    issues: list[ValidationIssue] = []

    issues.extend(validate_registry(registry_path))
    metric_issues, metrics = validate_metric_spec(metrics_path, series_dir=series_dir)
    issues.extend(metric_issues)

    if check_series:
        for m in metrics:
            if m.series_path is not None:
                issues.extend(validate_series_file(m.series_path, metric_id=m.id))

    n_err = sum(1 for it in issues if it.level == "ERROR")
    n_warn = sum(1 for it in issues if it.level == "WARN")
    status = 0 if n_err == 0 else 1
    header = f"validate: {n_err} error(s), {n_warn} warning(s)"
    body = _format_issues(issues)
    out = header if not body else (header + "\n" + body)
    return status, out
