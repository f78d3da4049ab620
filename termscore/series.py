from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from termscore.util import write_json_atomic

logger = logging.getLogger(__name__)


class SeriesFormatError(ValueError):
    """A series file does not match the per-metric series schema."""


@dataclass(frozen=True)
class AnnualObservation:
    year: int
    value: float
    yoy: float | None = None
    is_latest_partial: bool = False
    # Month (1-12) or quarter (1-4) of a latest partial row.
    sub_period: int | None = None


@dataclass(frozen=True)
class SeriesSource:
    name: str = ""
    homepage: str = ""
    api: str = ""
    attribution: str = ""


@dataclass(frozen=True)
class SeriesMeta:
    id: str
    title: str
    units: str = ""
    frequency: str = ""
    coverage_start: int | None = None
    coverage_end: int | None = None
    source: SeriesSource = field(default_factory=SeriesSource)
    notes: str = ""


@dataclass(frozen=True)
class MetricSeries:
    meta: SeriesMeta
    rows: tuple[AnnualObservation, ...]
    # "month" or "quarter"; decides the key used for the latest row on disk.
    sub_period_kind: str = "month"

    def annual_rows(self) -> list[AnnualObservation]:
        return [r for r in self.rows if not r.is_latest_partial]

    def latest_row(self) -> AnnualObservation | None:
        for r in self.rows:
            if r.is_latest_partial:
                return r
        return None

    def level_map(self, *, include_latest: bool = True) -> dict[int, float]:
        return _year_map(self, lambda r: r.value, include_latest=include_latest)

    def yoy_map(self, *, include_latest: bool = True) -> dict[int, float]:
        return _year_map(self, lambda r: r.yoy, include_latest=include_latest)

    def year_map(self, basis: str, *, include_latest: bool = True) -> dict[int, float]:
        if basis == "value":
            return self.level_map(include_latest=include_latest)
        if basis == "yoy":
            return self.yoy_map(include_latest=include_latest)
        raise ValueError(f"unknown series basis: {basis!r}")


def _year_map(series: MetricSeries, pick: Any, *, include_latest: bool) -> dict[int, float]:
    # Finalized annual rows win over a latest partial row for the same year.
    out: dict[int, float] = {}
    for r in series.annual_rows():
        v = pick(r)
        if v is not None:
            out[r.year] = float(v)
    if include_latest:
        latest = series.latest_row()
        if latest is not None and latest.year not in out:
            v = pick(latest)
            if v is not None:
                out[latest.year] = float(v)
    return out


def _require_int(obj: dict[str, Any], key: str, *, where: str) -> int:
    v = obj.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)) or (isinstance(v, float) and not v.is_integer()):
        raise SeriesFormatError(f"{where}: {key} must be an integer, got {v!r}")
    return int(v)


def _optional_number(obj: dict[str, Any], key: str, *, where: str) -> float | None:
    v = obj.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise SeriesFormatError(f"{where}: {key} must be a number, got {v!r}")
    x = float(v)
    if math.isnan(x) or math.isinf(x):
        raise SeriesFormatError(f"{where}: {key} must be finite, got {v!r}")
    return x


def _parse_meta(raw: Any, *, fallback_id: str) -> SeriesMeta:
    if not isinstance(raw, dict):
        raise SeriesFormatError("meta must be an object")
    coverage = raw.get("coverage") or {}
    if not isinstance(coverage, dict):
        raise SeriesFormatError("meta.coverage must be an object")
    src = raw.get("source") or {}
    if not isinstance(src, dict):
        raise SeriesFormatError("meta.source must be an object")

    def _opt_year(v: Any) -> int | None:
        if v is None:
            return None
        if isinstance(v, bool) or not isinstance(v, int):
            raise SeriesFormatError(f"meta.coverage year must be an integer, got {v!r}")
        return v

    return SeriesMeta(
        id=str(raw.get("id") or fallback_id),
        title=str(raw.get("title") or raw.get("id") or fallback_id),
        units=str(raw.get("units") or ""),
        frequency=str(raw.get("frequency") or ""),
        coverage_start=_opt_year(coverage.get("start")),
        coverage_end=_opt_year(coverage.get("end")),
        source=SeriesSource(
            name=str(src.get("name") or ""),
            homepage=str(src.get("homepage") or ""),
            api=str(src.get("api") or ""),
            attribution=str(src.get("attribution") or ""),
        ),
        notes=str(raw.get("notes") or ""),
    )


def parse_series_payload(payload: Any, *, fallback_id: str = "") -> MetricSeries:
    """Validate a decoded series document and build the immutable records."""
    if not isinstance(payload, dict):
        raise SeriesFormatError("series document must be an object")
    meta = _parse_meta(payload.get("meta") or {}, fallback_id=fallback_id)
    data = payload.get("data")
    if not isinstance(data, list):
        raise SeriesFormatError(f"{meta.id}: data must be a list")

    rows: list[AnnualObservation] = []
    sub_kind = "month"
    annual_years: set[int] = set()
    n_latest = 0
    prev_year: int | None = None
    for i, item in enumerate(data):
        where = f"{meta.id}: data[{i}]"
        if not isinstance(item, dict):
            raise SeriesFormatError(f"{where} must be an object")
        year = _require_int(item, "year", where=where)
        value = _optional_number(item, "value", where=where)
        if value is None:
            raise SeriesFormatError(f"{where}: value is required")
        yoy = _optional_number(item, "yoy", where=where)
        latest = bool(item.get("latest") or False)

        if prev_year is not None and year < prev_year:
            raise SeriesFormatError(f"{where}: rows must be ordered by year ascending")
        prev_year = year

        sub_period: int | None = None
        if latest:
            n_latest += 1
            if n_latest > 1:
                raise SeriesFormatError(f"{where}: more than one latest row")
            if item.get("quarter") is not None:
                sub_period = _require_int(item, "quarter", where=where)
                sub_kind = "quarter"
            elif item.get("month") is not None:
                sub_period = _require_int(item, "month", where=where)
        else:
            if year in annual_years:
                raise SeriesFormatError(f"{where}: duplicate year {year}")
            annual_years.add(year)

        rows.append(
            AnnualObservation(
                year=year,
                value=value,
                yoy=yoy,
                is_latest_partial=latest,
                sub_period=sub_period,
            )
        )

    # A latest row may only share its year with the final annual row.
    latest_row = next((r for r in rows if r.is_latest_partial), None)
    if latest_row is not None and annual_years and latest_row.year < max(annual_years):
        raise SeriesFormatError(f"{meta.id}: latest row year {latest_row.year} precedes final annual year")

    return MetricSeries(meta=meta, rows=tuple(rows), sub_period_kind=sub_kind)


def load_series_json(path: Path) -> MetricSeries:
    if not path.exists():
        raise FileNotFoundError(f"Missing series file: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SeriesFormatError(f"{path}: invalid JSON: {exc}") from exc
    return parse_series_payload(payload, fallback_id=path.stem)


def load_series_files(paths: dict[str, Path]) -> dict[str, MetricSeries]:
    """Load each metric's series; unavailable or malformed files are left out."""
    out: dict[str, MetricSeries] = {}
    for metric_id, path in paths.items():
        try:
            out[metric_id] = load_series_json(path)
        except (FileNotFoundError, SeriesFormatError) as exc:
            logger.warning("series %r unavailable: %s", metric_id, exc)
    return out


def series_to_payload(series: MetricSeries) -> dict[str, Any]:
    m = series.meta
    data: list[dict[str, Any]] = []
    for r in series.rows:
        row: dict[str, Any] = {"year": r.year, "value": r.value}
        if r.yoy is not None:
            row["yoy"] = r.yoy
        if r.is_latest_partial:
            row["latest"] = True
            if r.sub_period is not None:
                row[series.sub_period_kind] = r.sub_period
        data.append(row)
    return {
        "meta": {
            "id": m.id,
            "title": m.title,
            "units": m.units,
            "frequency": m.frequency,
            "coverage": {"start": m.coverage_start, "end": m.coverage_end},
            "source": {
                "name": m.source.name,
                "homepage": m.source.homepage,
                "api": m.source.api,
                "attribution": m.source.attribution,
            },
            "notes": m.notes,
        },
        "data": data,
    }


def write_series_json(series: MetricSeries, path: Path) -> None:
    write_json_atomic(path, series_to_payload(series))


def coverage_of(rows: Iterable[AnnualObservation]) -> tuple[int | None, int | None]:
    years = [r.year for r in rows]
    if not years:
        return None, None
    return min(years), max(years)
