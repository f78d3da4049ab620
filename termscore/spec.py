from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_spec(path: Path) -> dict[str, Any]:
    """Load a YAML spec file; an empty file yields an empty mapping."""
    if not path.exists():
        raise FileNotFoundError(f"Missing spec file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Spec root must be a mapping: {path}")
    return data
