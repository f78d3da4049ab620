from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from termscore.compare import ComparisonReport, MetricComparison, Selection, selector_of
from termscore.terms import TERM_SLOTS
from termscore.util import round_or_none, write_json_atomic

_ORDINALS = ("1st", "2nd", "3rd", "4th")
TERM_LABELS = [f"{_ORDINALS[i]} Year" for i in range(TERM_SLOTS)]


def _side(selection: Selection, *, label: str, heading: str, years: tuple[int, int] | None) -> dict[str, Any]:
    return {
        "selector": selector_of(selection),
        "label": label,
        "heading": heading,
        "years": None if years is None else {"start": years[0], "end": years[1]},
    }


def _metric_row(c: MetricComparison) -> dict[str, Any]:
    return {
        "id": c.metric_id,
        "title": c.title,
        "units": c.units,
        "basis": c.basis,
        "directionality": c.directionality.value,
        "a": {
            "series": [round_or_none(v) for v in c.series_a],
            "average": round_or_none(c.average_a),
            "range_change": round_or_none(c.range_change_a),
        },
        "b": {
            "series": [round_or_none(v) for v in c.series_b],
            "average": round_or_none(c.average_b),
            "range_change": round_or_none(c.range_change_b),
        },
        "winner": c.winner,
    }


def comparison_payload(report: ComparisonReport) -> dict[str, Any]:
    sc = report.scorecard
    return {
        "updated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "term_labels": list(TERM_LABELS),
        "selections": {
            "a": _side(report.selection_a, label=report.label_a, heading=report.heading_a, years=report.years_a),
            "b": _side(report.selection_b, label=report.label_b, heading=report.heading_b, years=report.years_b),
        },
        "metrics": [_metric_row(c) for c in report.comparisons],
        "scorecard": {
            "wins_a": sc.wins_a,
            "wins_b": sc.wins_b,
            "metrics_a": list(sc.metrics_a),
            "metrics_b": list(sc.metrics_b),
            "overall_winner": sc.overall_winner,
        },
    }


def write_comparison_json(report: ComparisonReport, out_path: Path) -> None:
    write_json_atomic(out_path, comparison_payload(report))
