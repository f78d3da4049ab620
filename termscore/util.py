from __future__ import annotations

import json
import math
from pathlib import Path


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def write_json_atomic(path: Path, obj: object) -> None:
    write_text_atomic(path, json.dumps(obj, indent=2) + "\n")


def parse_float(s: str) -> float | None:
    txt = (s or "").strip()
    if not txt or txt in {".", "NA", "NaN", "nan"}:
        return None
    try:
        x = float(txt)
    except ValueError:
        return None
    if math.isnan(x) or math.isinf(x):
        return None
    return x


def fmt_float(v: float | None, digits: int = 2) -> str:
    if v is None or math.isnan(v) or math.isinf(v):
        return ""
    return f"{v:.{digits}f}"


def round_or_none(v: float | None, digits: int = 6) -> float | None:
    if v is None:
        return None
    return round(v, digits)
