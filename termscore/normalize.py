from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from termscore.metrics import MetricDefinition
from termscore.series import AnnualObservation, MetricSeries, SeriesMeta, SeriesSource, coverage_of
from termscore.util import parse_float

logger = logging.getLogger(__name__)

FREQUENCIES = ("D", "W", "M", "Q", "A")
ANNUAL_METHODS = ("december", "q4", "mean", "annual", "last")
MAX_EXTRAPOLATION_YEARS = 2
COMBINE_OPS = ("ratio", "deflate")
TRANSFORMS = ("identity", "abs", "negate")
DATE_COLUMNS = ("date", "DATE", "observation_date")
# Weekly and daily feeds open (close) a year with an observation in its first (last) week.
YEAR_EDGE_DAYS = 7
_DATED_FREQUENCIES = {"D", "W"}

_METHOD_FREQUENCIES = {
    "december": {"M"},
    "q4": {"Q"},
    "annual": {"A"},
    "mean": set(FREQUENCIES),
    "last": set(FREQUENCIES),
}

_FREQUENCY_LABELS = {
    "december": "Annual (Dec)",
    "q4": "Annual (Q4)",
    "mean": "Annual (avg)",
    "annual": "Annual",
    "last": "Annual (last observation)",
}


@dataclass(frozen=True)
class TimeSeries:
    # Dates are sorted ascending; values may be None for missing.
    dates: list[date]
    values: list[float | None]

    def __post_init__(self) -> None:
        if len(self.dates) != len(self.values):
            raise ValueError("dates/values length mismatch")

    def observations(self) -> list[tuple[date, float]]:
        return [(d, v) for d, v in zip(self.dates, self.values) if v is not None]


def _parse_date(s: str) -> date:
    txt = s.strip()
    if len(txt) == 4 and txt.isdigit():
        return date(int(txt), 1, 1)
    return date.fromisoformat(txt[:10])


def load_csv_timeseries(path: Path, *, date_col: str | None = None, value_col: str | None = None) -> TimeSeries:
    """Read a two-column observation CSV (FRED derived/graph layout or year,value)."""
    if not path.exists():
        raise FileNotFoundError(f"Missing raw observations: {path}")
    dates: list[date] = []
    values: list[float | None] = []
    with path.open("r", encoding="utf-8", newline="") as handle:
        rdr = csv.DictReader(handle)
        fields = list(rdr.fieldnames or [])
        if not fields:
            raise ValueError(f"Empty CSV: {path}")
        dcol = date_col or next((c for c in (*DATE_COLUMNS, "year") if c in fields), None)
        if dcol is None:
            raise ValueError(f"{path}: no date column in {fields}")
        if value_col:
            vcol = value_col
        elif "value" in fields:
            vcol = "value"
        elif "value_usd" in fields:
            vcol = "value_usd"
        else:
            rest = [c for c in fields if c != dcol]
            if len(rest) != 1:
                raise ValueError(f"{path}: cannot pick a value column from {fields}")
            vcol = rest[0]
        for row in rdr:
            ds = (row.get(dcol) or "").strip()
            if not ds:
                continue
            dates.append(_parse_date(ds))
            values.append(parse_float(row.get(vcol) or ""))
    # Enforce sorted input (most upstream data is sorted already).
    if dates != sorted(dates):
        pairs = sorted(zip(dates, values), key=lambda t: t[0])
        dates = [d for d, _ in pairs]
        values = [v for _, v in pairs]
    return TimeSeries(dates=dates, values=values)


def _combine_value(v: float | None, den: float | None, op: str) -> float | None:
    if v is None or den is None or den == 0:
        return None
    return v / den if op == "ratio" else v / (den / 100.0)


def combine_timeseries(a: TimeSeries, b: TimeSeries, *, op: str) -> TimeSeries:
    """Date-aligned derived series: `ratio` = a/b, `deflate` = a/(b/100)."""
    if op not in COMBINE_OPS:
        raise ValueError(f"Unsupported combine op: {op!r}")
    b_by_date = {d: v for d, v in zip(b.dates, b.values)}
    dates: list[date] = []
    values: list[float | None] = []
    for d, v in zip(a.dates, a.values):
        if d not in b_by_date:
            continue
        dates.append(d)
        values.append(_combine_value(v, b_by_date[d], op))
    return TimeSeries(dates=dates, values=values)


def combine_levels(a: dict[int, float], b: dict[int, float], *, op: str) -> dict[int, float]:
    """Year-aligned counterpart of combine_timeseries for annual levels."""
    if op not in COMBINE_OPS:
        raise ValueError(f"Unsupported combine op: {op!r}")
    out: dict[int, float] = {}
    for y in sorted(set(a) & set(b)):
        v = _combine_value(a[y], b[y], op)
        if v is not None:
            out[y] = v
    return out


def _transform_value(v: float | None, kind: str) -> float | None:
    if v is None or kind == "identity":
        return v
    return abs(v) if kind == "abs" else -v


def apply_value_transform(ts: TimeSeries, kind: str) -> TimeSeries:
    if kind not in TRANSFORMS:
        raise ValueError(f"Unsupported value transform: {kind!r}")
    if kind == "identity":
        return ts
    return TimeSeries(dates=list(ts.dates), values=[_transform_value(v, kind) for v in ts.values])


def _quarter(d: date) -> int:
    return (d.month - 1) // 3 + 1


def _sub_period(d: date, frequency: str) -> int:
    return _quarter(d) if frequency == "Q" else d.month


def _is_final_period(d: date, frequency: str) -> bool:
    if frequency == "A":
        return True
    if frequency == "Q":
        return _quarter(d) == 4
    return d.month == 12


def _closes_year(d: date, frequency: str) -> bool:
    if frequency in _DATED_FREQUENCIES:
        return d >= date(d.year, 12, 31) - timedelta(days=YEAR_EDGE_DAYS - 1)
    return _is_final_period(d, frequency)


def _opens_year(d: date, frequency: str) -> bool:
    if frequency in _DATED_FREQUENCIES:
        return d <= date(d.year, 1, 1) + timedelta(days=YEAR_EDGE_DAYS - 1)
    if frequency == "Q":
        return _quarter(d) == 1
    if frequency == "M":
        return d.month == 1
    return True


def _complete_years(ts: TimeSeries, frequency: str, *, require_start: bool = False) -> set[int]:
    """Years whose observations run through the end of the year.

    With require_start, the series' first year must also begin in its first
    period, so a mid-year start is not averaged as a full year.
    """
    obs = ts.observations()
    if not obs:
        return set()
    complete = {d.year for d, _ in obs if _closes_year(d, frequency)}
    last_year = obs[-1][0].year
    if frequency in _DATED_FREQUENCIES:
        # Irregular feeds can skip the final week; a later observation still closes the year.
        complete |= {d.year for d, _ in obs if d.year < last_year}
    if require_start:
        first_year = obs[0][0].year
        if not any(_opens_year(d, frequency) for d, _ in obs if d.year == first_year):
            complete.discard(first_year)
    return complete


def annualize(ts: TimeSeries, *, frequency: str, method: str) -> dict[int, float]:
    """Collapse observations to one level per complete calendar year."""
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unsupported frequency: {frequency!r}")
    if method not in ANNUAL_METHODS:
        raise ValueError(f"Unsupported annual method: {method!r}")
    if frequency not in _METHOD_FREQUENCIES[method]:
        raise ValueError(f"Annual method {method!r} does not apply to frequency {frequency!r}")

    complete = _complete_years(ts, frequency, require_start=(method == "mean"))
    by_year: dict[int, list[tuple[date, float]]] = {}
    for d, v in ts.observations():
        if d.year in complete:
            by_year.setdefault(d.year, []).append((d, v))

    out: dict[int, float] = {}
    for year in sorted(by_year):
        obs = by_year[year]
        if method == "mean":
            out[year] = sum(v for _, v in obs) / len(obs)
        elif method in {"december", "q4"}:
            final = [v for d, v in obs if _is_final_period(d, frequency)]
            out[year] = final[-1]
        else:
            # "annual" / "last": last observation of the year.
            out[year] = obs[-1][1]
    return out


def backfill_with_proxy(
    levels: dict[int, float],
    proxy: dict[int, float],
    *,
    start_year: int,
) -> tuple[dict[int, float], list[int]]:
    """Chain the proxy's growth backward from the first known year down to start_year.

    est(y) = est(y + 1) / (proxy(y + 1) / proxy(y)); stops at the first year the
    proxy cannot supply a ratio for.
    """
    if not levels:
        return dict(levels), []
    out = dict(levels)
    first = min(out)
    estimate = out[first]
    filled: list[int] = []
    for y in range(first - 1, start_year - 1, -1):
        p_next = proxy.get(y + 1)
        p_curr = proxy.get(y)
        if not p_next or not p_curr:
            break
        estimate = estimate / (p_next / p_curr)
        out[y] = estimate
        filled.append(y)
    return out, sorted(filled)


def trailing_growth_rate(levels: dict[int, float], *, window: int = 3) -> float | None:
    """Mean of the last `window` consecutive year-over-year growth rates (as fractions)."""
    if window < 1:
        raise ValueError("window must be >= 1")
    if not levels:
        return None
    last = max(levels)
    years = list(range(last - window, last + 1))
    if any(y not in levels for y in years):
        return None
    rates: list[float] = []
    for prev, curr in zip(years, years[1:]):
        p = levels[prev]
        if p != 0:
            rates.append((levels[curr] - p) / p)
    if not rates:
        return None
    return sum(rates) / len(rates)


def extrapolate_trailing(
    levels: dict[int, float],
    *,
    through_year: int,
    window: int = 3,
    max_years: int = MAX_EXTRAPOLATION_YEARS,
) -> tuple[dict[int, float], list[int]]:
    """Compound the trailing mean growth rate forward, one year at a time."""
    if max_years < 0 or max_years > MAX_EXTRAPOLATION_YEARS:
        raise ValueError(f"max_years must be within 0..{MAX_EXTRAPOLATION_YEARS}, got {max_years}")
    out = dict(levels)
    if not out:
        return out, []
    last = max(out)
    stop = min(through_year, last + max_years)
    if stop <= last:
        return out, []
    growth = trailing_growth_rate(out, window=window)
    if growth is None:
        logger.warning("not enough trailing history to extrapolate past %s (window=%s)", last, window)
        return out, []
    base = out[last]
    filled: list[int] = []
    for y in range(last + 1, stop + 1):
        out[y] = base * (1.0 + growth) ** (y - last)
        filled.append(y)
    return out, filled


def pct_change(curr: float, prev: float | None) -> float | None:
    if prev is None or prev == 0:
        return None
    return (curr - prev) / prev * 100.0


def add_yoy(levels: dict[int, float], *, digits: int = 2) -> list[AnnualObservation]:
    # YoY is computed from the rounded levels so stored rows stay self-consistent.
    rounded = {y: round(v, digits) for y, v in levels.items()}
    rows: list[AnnualObservation] = []
    for y in sorted(rounded):
        yoy = pct_change(rounded[y], rounded.get(y - 1))
        rows.append(AnnualObservation(year=y, value=rounded[y], yoy=None if yoy is None else round(yoy, digits)))
    return rows


def _on_or_before(obs: list[tuple[date, float]], target: date) -> tuple[date, float] | None:
    best: tuple[date, float] | None = None
    for d, v in obs:
        if d <= target:
            best = (d, v)
        else:
            break
    return best


def latest_partial(ts: TimeSeries, *, frequency: str, digits: int = 2) -> AnnualObservation | None:
    """Most recent sub-annual observation of an incomplete year, with same-period YoY."""
    if frequency == "A":
        return None
    obs = ts.observations()
    if not obs:
        return None
    last_d, last_v = obs[-1]
    if last_d.year in _complete_years(ts, frequency):
        return None

    prev_v: float | None = None
    if frequency in {"M", "Q"}:
        sp = _sub_period(last_d, frequency)
        for d, v in obs:
            if d.year == last_d.year - 1 and _sub_period(d, frequency) == sp:
                prev_v = v
    else:
        target = _shift_year(last_d, -1)
        hit = _on_or_before(obs, target)
        prev_v = hit[1] if hit else None

    value = round(last_v, digits)
    yoy = pct_change(value, None if prev_v is None else round(prev_v, digits))
    return AnnualObservation(
        year=last_d.year,
        value=value,
        yoy=None if yoy is None else round(yoy, digits),
        is_latest_partial=True,
        sub_period=_sub_period(last_d, frequency),
    )


def splice_missing_years(
    levels: dict[int, float],
    secondary: dict[int, float],
) -> tuple[dict[int, float], list[int]]:
    """Take secondary levels only for years the main levels lack; main wins on overlap."""
    out = dict(levels)
    filled: list[int] = []
    for y in sorted(secondary):
        if y not in out:
            out[y] = secondary[y]
            filled.append(y)
    return out, filled


def _shift_year(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return d.replace(year=d.year + years, day=28)


def _resolve(base_dir: Path, p: Any) -> Path:
    path = Path(str(p))
    return path if path.is_absolute() else base_dir / path


def _load_recipe_input(recipe: dict[str, Any], key: str, *, base_dir: Path, metric_id: str) -> TimeSeries:
    inputs = recipe.get("inputs") or {}
    if key not in inputs:
        raise ValueError(f"Metric {metric_id}: normalize.inputs.{key} missing")
    spec = inputs[key]
    if isinstance(spec, dict):
        return load_csv_timeseries(
            _resolve(base_dir, spec.get("path")),
            date_col=spec.get("date_col"),
            value_col=spec.get("value_col"),
        )
    return load_csv_timeseries(_resolve(base_dir, spec))


def _clip_years(levels: dict[int, float], recipe: dict[str, Any]) -> dict[int, float]:
    start_year = recipe.get("start_year")
    if start_year is not None:
        levels = {y: v for y, v in levels.items() if y >= int(start_year)}
    end_year = recipe.get("end_year")
    if end_year is not None:
        levels = {y: v for y, v in levels.items() if y <= int(end_year)}
    return levels


def _extrapolate_levels(
    levels: dict[int, float], ex: dict[str, Any], *, metric_id: str
) -> tuple[dict[int, float], list[int]]:
    if ex.get("through_year") is None:
        raise ValueError(f"Metric {metric_id}: extrapolate needs through_year")
    return extrapolate_trailing(
        levels,
        through_year=int(ex["through_year"]),
        window=int(ex.get("window", 3)),
        max_years=int(ex.get("max_years", MAX_EXTRAPOLATION_YEARS)),
    )


def normalize_metric(definition: MetricDefinition, *, base_dir: Path = Path(".")) -> MetricSeries:
    """Run a metric's normalize recipe and build its annual series."""
    recipe = definition.normalize
    if not recipe:
        raise ValueError(f"Metric {definition.id} has no normalize recipe")

    frequency = str(recipe.get("frequency") or "").strip()
    method = str(recipe.get("annual") or ("annual" if frequency == "A" else "")).strip()
    digits = int(recipe.get("round", 2))

    main_ts = _load_recipe_input(recipe, "main", base_dir=base_dir, metric_id=definition.id)
    transform = str(recipe.get("transform") or "identity")
    combine = recipe.get("combine")
    other_ts: TimeSeries | None = None
    ts = main_ts
    if combine:
        other_ts = _load_recipe_input(recipe, "other", base_dir=base_dir, metric_id=definition.id)
        ts = combine_timeseries(main_ts, other_ts, op=str(combine))
    ts = apply_value_transform(ts, transform)

    method_notes: list[str] = []
    ex = recipe.get("extrapolate")
    per_input = bool(ex and ex.get("per_input"))

    if per_input:
        if other_ts is None:
            raise ValueError(f"Metric {definition.id}: extrapolate.per_input needs combine")
        parts: list[dict[int, float]] = []
        extrapolated: set[int] = set()
        for part in (main_ts, other_ts):
            part_levels = _clip_years(annualize(part, frequency=frequency, method=method), recipe)
            part_levels, filled = _extrapolate_levels(part_levels, ex, metric_id=definition.id)
            parts.append(part_levels)
            extrapolated.update(filled)
        levels = {
            y: _transform_value(v, transform)
            for y, v in combine_levels(parts[0], parts[1], op=str(combine)).items()
        }
        filled = sorted(y for y in extrapolated if y in levels)
        if filled:
            logger.info("%s: extrapolated inputs %s-%s", definition.id, filled[0], filled[-1])
            method_notes.append(
                f"{filled[0]}–{filled[-1]} extrapolated for each input using the mean growth of the last "
                f"{int(ex.get('window', 3))} years, then combined."
            )
    else:
        levels = annualize(ts, frequency=frequency, method=method)

    fill = recipe.get("fill_from")
    if fill:
        if not fill.get("path"):
            raise ValueError(f"Metric {definition.id}: fill_from needs path")
        fill_ts = _load_recipe_input({"inputs": {"fill": fill}}, "fill", base_dir=base_dir, metric_id=definition.id)
        fill_freq = str(fill.get("frequency") or "A")
        fill_levels = annualize(
            apply_value_transform(fill_ts, transform),
            frequency=fill_freq,
            method=str(fill.get("annual") or ("annual" if fill_freq == "A" else "mean")),
        )
        levels, filled = splice_missing_years(levels, _clip_years(fill_levels, recipe))
        if filled:
            logger.info("%s: filled %s-%s from secondary source", definition.id, filled[0], filled[-1])
            method_notes.append(
                f"{filled[0]}–{filled[-1]} filled from "
                f"{fill.get('label') or Path(str(fill.get('path'))).stem} where the main source has no data."
            )

    levels = _clip_years(levels, recipe)

    bf = recipe.get("backfill")
    if bf:
        if not bf.get("proxy") or bf.get("start_year") is None:
            raise ValueError(f"Metric {definition.id}: backfill needs proxy and start_year")
        proxy_ts = _load_recipe_input({"inputs": {"proxy": bf["proxy"]}}, "proxy", base_dir=base_dir, metric_id=definition.id)
        proxy_freq = str(bf.get("frequency") or "A")
        proxy_levels = annualize(
            proxy_ts,
            frequency=proxy_freq,
            method=str(bf.get("annual") or ("annual" if proxy_freq == "A" else "mean")),
        )
        first_known = min(levels) if levels else None
        levels, filled = backfill_with_proxy(levels, proxy_levels, start_year=int(bf["start_year"]))
        if filled:
            logger.info("%s: backfilled %s-%s from proxy", definition.id, filled[0], filled[-1])
            method_notes.append(
                f"{filled[0]}–{filled[-1]} backfilled by chaining inverse growth of "
                f"{bf.get('label') or Path(str(bf.get('proxy'))).stem} backward from {first_known}."
            )

    if ex and not per_input:
        levels, filled = _extrapolate_levels(levels, ex, metric_id=definition.id)
        if filled:
            logger.info("%s: extrapolated %s-%s", definition.id, filled[0], filled[-1])
            method_notes.append(
                f"{filled[0]}–{filled[-1]} extrapolated using the mean growth of the last "
                f"{int(ex.get('window', 3))} years."
            )

    rows = add_yoy(levels, digits=digits)
    output_start = recipe.get("output_start")
    if output_start is not None:
        rows = [r for r in rows if r.year >= int(output_start)]

    latest: AnnualObservation | None = None
    if bool(recipe.get("include_latest", False)):
        latest = latest_partial(ts, frequency=frequency, digits=digits)
        if latest is not None and rows and latest.year < rows[-1].year:
            latest = None
    if latest is not None:
        rows.append(latest)

    frequency_label = _FREQUENCY_LABELS[method]
    if latest is not None:
        frequency_label += ", plus latest " + ("quarter" if frequency == "Q" else "month")

    notes = " ".join(x for x in [str(recipe.get("notes") or "").strip(), *method_notes] if x)
    start, end = coverage_of(rows)
    src = definition.source
    meta = SeriesMeta(
        id=definition.id,
        title=definition.title,
        units=definition.units,
        frequency=frequency_label,
        coverage_start=start,
        coverage_end=end,
        source=SeriesSource(
            name=src.get("name", ""),
            homepage=src.get("homepage", ""),
            api=src.get("api", ""),
            attribution=src.get("attribution", ""),
        ),
        notes=notes,
    )
    return MetricSeries(
        meta=meta,
        rows=tuple(rows),
        sub_period_kind="quarter" if frequency == "Q" else "month",
    )
