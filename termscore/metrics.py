from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from termscore.spec import load_spec

BASES = ("value", "yoy")


class MetricDirectionality(str, Enum):
    LOWER_IS_BETTER = "lower_is_better"
    HIGHER_IS_BETTER = "higher_is_better"


@dataclass(frozen=True)
class MetricDefinition:
    id: str
    title: str
    directionality: MetricDirectionality
    # Which year map feeds the displayed term series; range change always uses levels.
    basis: str = "value"
    units: str = ""
    series_path: Path | None = None
    source: dict[str, str] = field(default_factory=dict)
    normalize: dict[str, Any] | None = None


def _parse_metric(m: dict[str, Any], *, series_dir: Path) -> MetricDefinition:
    metric_id = str(m.get("id") or "").strip()
    if not metric_id:
        raise ValueError("Metric missing id")
    raw_dir = str(m.get("directionality") or "").strip()
    try:
        directionality = MetricDirectionality(raw_dir)
    except ValueError as exc:
        raise ValueError(f"Metric {metric_id}: unsupported directionality {raw_dir!r}") from exc
    basis = str(m.get("basis") or "value").strip()
    if basis not in BASES:
        raise ValueError(f"Metric {metric_id}: unsupported basis {basis!r}")

    series = m.get("series")
    series_path = Path(str(series)) if series else series_dir / f"{metric_id}.json"

    norm = m.get("normalize")
    if norm is not None and not isinstance(norm, dict):
        raise ValueError(f"Metric {metric_id}: normalize must be a mapping")
    src = m.get("source") or {}
    if not isinstance(src, dict):
        raise ValueError(f"Metric {metric_id}: source must be a mapping")

    return MetricDefinition(
        id=metric_id,
        title=str(m.get("title") or metric_id),
        directionality=directionality,
        basis=basis,
        units=str(m.get("units") or ""),
        series_path=series_path,
        source={str(k): str(v) for k, v in src.items()},
        normalize=norm,
    )


def load_metric_definitions(path: Path, *, series_dir: Path = Path("data/series")) -> tuple[MetricDefinition, ...]:
    spec = load_spec(path)
    metrics_cfg = spec.get("metrics") or []
    if not isinstance(metrics_cfg, list):
        raise ValueError(f"{path}: metrics must be a list")

    out: list[MetricDefinition] = []
    seen: set[str] = set()
    for m in metrics_cfg:
        if not isinstance(m, dict):
            raise ValueError(f"{path}: each metric must be a mapping")
        d = _parse_metric(m, series_dir=series_dir)
        if d.id in seen:
            raise ValueError(f"{path}: duplicate metric id {d.id!r}")
        seen.add(d.id)
        out.append(d)
    return tuple(out)


def series_paths(metrics: tuple[MetricDefinition, ...]) -> dict[str, Path]:
    return {m.id: m.series_path for m in metrics if m.series_path is not None}
