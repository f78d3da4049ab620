from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from termscore.metrics import MetricDefinition, MetricDirectionality
from termscore.scoreboard import Scorecard, build_scorecard, decide_winner
from termscore.series import MetricSeries
from termscore.terms import PARTIES, PARTY_LABELS, TERM_SLOTS, TermRegistry

PARTY_PREFIX = "party-"

YearMap = Mapping[int, float | None]
# Always TERM_SLOTS long; slot i is year i + 1 of the term.
TermSeries = tuple[float | None, ...]


@dataclass(frozen=True)
class SpecificTerm:
    term_id: str


@dataclass(frozen=True)
class PartyAggregate:
    party: str


Selection = SpecificTerm | PartyAggregate


def parse_selection(raw: str) -> Selection:
    """`party-R` / `party-D` select a party aggregate; anything else is an administration id."""
    txt = (raw or "").strip()
    if txt.startswith(PARTY_PREFIX):
        return PartyAggregate(party=txt[len(PARTY_PREFIX):])
    return SpecificTerm(term_id=txt)


def selector_of(selection: Selection) -> str:
    if isinstance(selection, PartyAggregate):
        return f"{PARTY_PREFIX}{selection.party}"
    return selection.term_id


def _party_since(registry: TermRegistry) -> int | None:
    # Baseline year of the earliest registered term.
    first = registry.first_year()
    return None if first is None else first - 1


def selection_label(registry: TermRegistry, selection: Selection) -> str:
    if isinstance(selection, PartyAggregate):
        name = PARTY_LABELS.get(selection.party, selection.party)
        since = _party_since(registry)
        return name if since is None else f"{name} ({since}-present)"
    term = registry.get(selection.term_id)
    return term.label if term else selection.term_id


def selection_heading(registry: TermRegistry, selection: Selection) -> str:
    """Short name for headings: the label without its year suffix."""
    if isinstance(selection, PartyAggregate):
        return PARTY_LABELS.get(selection.party, selection.party)
    term = registry.get(selection.term_id)
    return term.name if term else selection.term_id


def selection_years(registry: TermRegistry, selection: Selection) -> tuple[int, int] | None:
    if isinstance(selection, PartyAggregate):
        terms = registry.by_party(selection.party)
        if not terms:
            return None
        return min(t.start_year for t in terms), max(t.end_year for t in terms)
    term = registry.get(selection.term_id)
    return None if term is None else (term.start_year, term.end_year)


def _empty_series() -> TermSeries:
    return (None,) * TERM_SLOTS


def term_years(registry: TermRegistry, term_id: str) -> list[int]:
    term = registry.get(term_id)
    return [] if term is None else term.years


def build_term_series(registry: TermRegistry, term_id: str, year_map: YearMap) -> TermSeries:
    years = term_years(registry, term_id)
    out = [year_map.get(y) for y in years[:TERM_SLOTS]]
    out.extend([None] * (TERM_SLOTS - len(out)))
    return tuple(out)


def build_party_series(registry: TermRegistry, party: str, year_map: YearMap) -> TermSeries:
    """Per-slot unweighted mean across every term of the party."""
    if party not in PARTIES:
        return _empty_series()
    per_term = [build_term_series(registry, t.term_id, year_map) for t in registry.by_party(party)]
    out: list[float | None] = []
    for i in range(TERM_SLOTS):
        xs = [s[i] for s in per_term if s[i] is not None]
        out.append(sum(xs) / len(xs) if xs else None)
    return tuple(out)


def selection_series(registry: TermRegistry, selection: Selection, year_map: YearMap) -> TermSeries:
    if isinstance(selection, PartyAggregate):
        return build_party_series(registry, selection.party, year_map)
    return build_term_series(registry, selection.term_id, year_map)


def term_average(series: TermSeries) -> float | None:
    xs = [v for v in series if v is not None]
    if not xs:
        return None
    return sum(xs) / len(xs)


def _pct_change(end: float | None, base: float | None) -> float | None:
    if end is None or base is None or base == 0:
        return None
    return (end - base) / base * 100.0


def term_range_change(
    registry: TermRegistry,
    term_id: str,
    display_map: YearMap,
    level_map: YearMap,
) -> float | None:
    """Percent change from the year before the first slot with data to the last slot with data.

    Slot availability comes from the displayed series; both endpoints are
    read from raw levels.
    """
    years = term_years(registry, term_id)[:TERM_SLOTS]
    series = build_term_series(registry, term_id, display_map)
    present = [years[i] for i, v in enumerate(series) if v is not None and i < len(years)]
    if not present:
        return None
    y0, y1 = present[0], present[-1]
    return _pct_change(level_map.get(y1), level_map.get(y0 - 1))


def series_range_change(series: TermSeries) -> float | None:
    # Party aggregates have no single baseline year: first vs last averaged slot.
    xs = [v for v in series if v is not None]
    if not xs:
        return None
    return _pct_change(xs[-1], xs[0])


def range_change(
    selection: Selection,
    *,
    registry: TermRegistry,
    display_map: YearMap,
    level_map: YearMap,
) -> float | None:
    if isinstance(selection, PartyAggregate):
        return series_range_change(build_party_series(registry, selection.party, level_map))
    return term_range_change(registry, selection.term_id, display_map, level_map)


@dataclass(frozen=True)
class MetricComparison:
    metric_id: str
    title: str
    directionality: MetricDirectionality
    basis: str
    units: str
    series_a: TermSeries
    series_b: TermSeries
    average_a: float | None
    average_b: float | None
    range_change_a: float | None
    range_change_b: float | None
    winner: str


@dataclass(frozen=True)
class ComparisonReport:
    selection_a: Selection
    selection_b: Selection
    label_a: str
    label_b: str
    heading_a: str
    heading_b: str
    years_a: tuple[int, int] | None
    years_b: tuple[int, int] | None
    comparisons: tuple[MetricComparison, ...]
    scorecard: Scorecard


def compare_metric(
    selection_a: Selection,
    selection_b: Selection,
    metric: MetricDefinition,
    series: MetricSeries | None,
    *,
    registry: TermRegistry,
) -> MetricComparison:
    display_map: YearMap = series.year_map(metric.basis) if series is not None else {}
    level_map: YearMap = series.level_map() if series is not None else {}

    series_a = selection_series(registry, selection_a, display_map)
    series_b = selection_series(registry, selection_b, display_map)
    change_a = range_change(selection_a, registry=registry, display_map=display_map, level_map=level_map)
    change_b = range_change(selection_b, registry=registry, display_map=display_map, level_map=level_map)

    return MetricComparison(
        metric_id=metric.id,
        title=metric.title,
        directionality=metric.directionality,
        basis=metric.basis,
        units=metric.units,
        series_a=series_a,
        series_b=series_b,
        average_a=term_average(series_a),
        average_b=term_average(series_b),
        range_change_a=change_a,
        range_change_b=change_b,
        winner=decide_winner(change_a, change_b, metric.directionality),
    )


def compare(
    selection_a: Selection,
    selection_b: Selection,
    all_series: Mapping[str, MetricSeries],
    *,
    registry: TermRegistry,
    metrics: tuple[MetricDefinition, ...],
) -> ComparisonReport:
    """Compare two selections across every registered metric.

    Metrics without a loaded series yield all-null rows and no winner.
    """
    comparisons = tuple(
        compare_metric(selection_a, selection_b, m, all_series.get(m.id), registry=registry) for m in metrics
    )
    return ComparisonReport(
        selection_a=selection_a,
        selection_b=selection_b,
        label_a=selection_label(registry, selection_a),
        label_b=selection_label(registry, selection_b),
        heading_a=selection_heading(registry, selection_a),
        heading_b=selection_heading(registry, selection_b),
        years_a=selection_years(registry, selection_a),
        years_b=selection_years(registry, selection_b),
        comparisons=comparisons,
        scorecard=build_scorecard(comparisons),
    )
