from __future__ import annotations

import os
from pathlib import Path

DATA_DIR_ENV = "TERMSCORE_DATA_DIR"


def load_dotenv(path: Path, *, override: bool = False) -> dict[str, str]:
    """Load KEY=VALUE lines from a .env file into os.environ.

    Blank lines and `#` comments are skipped; surrounding quotes are stripped.
    Returns the pairs that were read (whether or not they were applied).
    """
    loaded: dict[str, str] = {}
    if not path.exists():
        return loaded
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {"'", '"'}:
            val = val[1:-1]
        if not key:
            continue
        loaded[key] = val
        if override or key not in os.environ:
            os.environ[key] = val
    return loaded


def data_dir(default: Path = Path("data")) -> Path:
    val = os.getenv(DATA_DIR_ENV, "").strip()
    return Path(val) if val else default
