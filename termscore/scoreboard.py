from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from termscore.metrics import MetricDirectionality
from termscore.util import fmt_float, write_text_atomic

if TYPE_CHECKING:
    from termscore.compare import ComparisonReport, MetricComparison

WINNERS = ("A", "B", "none")
PLACEHOLDER = "–"


def decide_winner(
    change_a: float | None,
    change_b: float | None,
    directionality: MetricDirectionality,
) -> str:
    if change_a is None or change_b is None or change_a == change_b:
        return "none"
    if directionality == MetricDirectionality.LOWER_IS_BETTER:
        return "A" if change_a < change_b else "B"
    return "A" if change_a > change_b else "B"


@dataclass(frozen=True)
class Scorecard:
    wins_a: int
    wins_b: int
    metrics_a: tuple[str, ...]
    metrics_b: tuple[str, ...]

    @property
    def overall_winner(self) -> str:
        if self.wins_a > self.wins_b:
            return "A"
        if self.wins_b > self.wins_a:
            return "B"
        return "tie"


def build_scorecard(comparisons: Iterable[MetricComparison]) -> Scorecard:
    metrics_a: list[str] = []
    metrics_b: list[str] = []
    for c in comparisons:
        if c.winner == "A":
            metrics_a.append(c.title)
        elif c.winner == "B":
            metrics_b.append(c.title)
    return Scorecard(
        wins_a=len(metrics_a),
        wins_b=len(metrics_b),
        metrics_a=tuple(metrics_a),
        metrics_b=tuple(metrics_b),
    )


def _fmt(v: float | None, digits: int = 2) -> str:
    txt = fmt_float(v, digits)
    return txt if txt else PLACEHOLDER


def _fmt_change(v: float | None) -> str:
    if v is None:
        return PLACEHOLDER
    sign = "+" if v > 0 else ""
    return f"{sign}{v:.1f}%"


def _winner_name(winner: str, *, name_a: str, name_b: str) -> str:
    if winner == "A":
        return name_a
    if winner == "B":
        return name_b
    return PLACEHOLDER


def write_scorecard_md(report: ComparisonReport, out_path: Path) -> None:
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
    name_a = report.heading_a
    name_b = report.heading_b

    lines: list[str] = []
    lines.append(f"# {name_a} vs {name_b}")
    lines.append("")
    lines.append(f"Generated: `{now}`")
    lines.append("")
    lines.append(f"- A: {report.label_a} ({_fmt_span(report.years_a)})")
    lines.append(f"- B: {report.label_b} ({_fmt_span(report.years_b)})")
    lines.append("")
    lines.append("Range change runs from the year before the first year with data to the last year with data.")
    lines.append("")

    for c in report.comparisons:
        lines.append(f"## {c.title}")
        lines.append("")
        better = "lower is better" if c.directionality == MetricDirectionality.LOWER_IS_BETTER else "higher is better"
        units = f"{c.units}, " if c.units else ""
        basis = "YoY %" if c.basis == "yoy" else "level"
        lines.append(f"Basis: {basis} ({units}{better})")
        lines.append("")
        lines.append("| Side | 1st Year | 2nd Year | 3rd Year | 4th Year | Average | Range change |")
        lines.append("|---|---:|---:|---:|---:|---:|---:|")
        for name, series, avg, change in (
            (name_a, c.series_a, c.average_a, c.range_change_a),
            (name_b, c.series_b, c.average_b, c.range_change_b),
        ):
            slots = " | ".join(_fmt(v) for v in series)
            lines.append(f"| {name} | {slots} | {_fmt(avg)} | {_fmt_change(change)} |")
        lines.append("")
        lines.append(f"Winner: {_winner_name(c.winner, name_a=name_a, name_b=name_b)}")
        lines.append("")

    sc = report.scorecard
    lines.append("## Scorecard")
    lines.append("")
    lines.append("| Side | Wins | Metrics |")
    lines.append("|---|---:|---|")
    lines.append(f"| {name_a} | {sc.wins_a} | {', '.join(sc.metrics_a) or PLACEHOLDER} |")
    lines.append(f"| {name_b} | {sc.wins_b} | {', '.join(sc.metrics_b) or PLACEHOLDER} |")
    lines.append("")
    if sc.overall_winner == "tie":
        lines.append(f"Overall: tie ({sc.wins_a}-{sc.wins_b})")
    else:
        lines.append(f"Overall: {_winner_name(sc.overall_winner, name_a=name_a, name_b=name_b)}")
    lines.append("")

    write_text_atomic(out_path, "\n".join(lines))


def _fmt_span(years: tuple[int, int] | None) -> str:
    if years is None:
        return PLACEHOLDER
    return f"{years[0]}-{years[1]}"
