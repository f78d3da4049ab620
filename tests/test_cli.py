from __future__ import annotations

import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from io import StringIO
from pathlib import Path
from unittest import mock

from termscore.cli import main
from termscore.env import DATA_DIR_ENV, load_dotenv

FIXTURE_DIR = Path(__file__).parent / "fixtures"


def _run(argv: list[str]) -> tuple[int, str]:
    buf = StringIO()
    with redirect_stdout(buf):
        status = main(argv)
    return status, buf.getvalue()


class CliTests(unittest.TestCase):
    def test_terms_lists_registry(self) -> None:
        status, out = _run(["terms", "--registry", str(FIXTURE_DIR / "administrations_min.yaml"), "--dotenv", "/nonexistent/.env"])
        self.assertEqual(status, 0)
        self.assertIn("obama-1\tD\t2009-2012\tObama (2009–2013)", out)

    def test_normalize_then_compare(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            series_dir = root / "series"
            status, _out = _run(
                [
                    "normalize",
                    "--spec", str(FIXTURE_DIR / "metrics_min.yaml"),
                    "--base-dir", str(FIXTURE_DIR),
                    "--series-dir", str(series_dir),
                    "--dotenv", str(root / ".env"),
                ]
            )
            self.assertEqual(status, 0)
            self.assertTrue((series_dir / "unemployment.json").exists())

            out_md = root / "compare.md"
            out_json = root / "compare.json"
            status, out = _run(
                [
                    "compare", "party-D", "party-R",
                    "--spec", str(FIXTURE_DIR / "metrics_min.yaml"),
                    "--registry", str(FIXTURE_DIR / "administrations_min.yaml"),
                    "--series-dir", str(FIXTURE_DIR / "series"),
                    "--output-md", str(out_md),
                    "--output-json", str(out_json),
                    "--dotenv", str(root / ".env"),
                ]
            )
            self.assertEqual(status, 0)
            self.assertIn("Democrats 1 - 0 Republicans: Democrats", out)
            self.assertTrue(out_md.exists())
            payload = json.loads(out_json.read_text(encoding="utf-8"))
            self.assertEqual(payload["scorecard"]["overall_winner"], "A")

    def test_normalize_missing_source_exits_nonzero(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            status, out = _run(
                [
                    "normalize",
                    "--spec", str(FIXTURE_DIR / "metrics_min.yaml"),
                    "--base-dir", str(root),
                    "--series-dir", str(root / "series"),
                    "--dotenv", str(root / ".env"),
                ]
            )
        self.assertEqual(status, 1)
        self.assertIn("unavailable: unemployment", out)

    def test_validate_uses_data_dir_from_dotenv(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            dotenv = root / ".env"
            dotenv.write_text(f"# fixtures\nexport {DATA_DIR_ENV}=\"{FIXTURE_DIR}\"\n", encoding="utf-8")
            with mock.patch.dict(os.environ, {}, clear=False):
                os.environ.pop(DATA_DIR_ENV, None)
                status, out = _run(
                    [
                        "validate",
                        "--spec", str(FIXTURE_DIR / "metrics_min.yaml"),
                        "--registry", str(FIXTURE_DIR / "administrations_min.yaml"),
                        "--dotenv", str(dotenv),
                    ]
                )
        self.assertEqual(status, 0, out)
        self.assertIn("validate: 0 error(s), 0 warning(s)", out)

    def test_bad_spec_exits_nonzero(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            spec = Path(tmpdir) / "metrics.yaml"
            spec.write_text("metrics:\n  - id: x\n    directionality: sideways\n", encoding="utf-8")
            status, _out = _run(["normalize", "--spec", str(spec), "--dotenv", str(Path(tmpdir) / ".env")])
        self.assertEqual(status, 2)


class DotenvTests(unittest.TestCase):
    def test_does_not_override_by_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir) / ".env"
            p.write_text("A_KEY=from_file\nB_KEY='quoted'\n\nnot a pair\n", encoding="utf-8")
            with mock.patch.dict(os.environ, {"A_KEY": "from_env"}, clear=False):
                loaded = load_dotenv(p)
                self.assertEqual(os.environ["A_KEY"], "from_env")
                self.assertEqual(os.environ["B_KEY"], "quoted")
        self.assertEqual(loaded, {"A_KEY": "from_file", "B_KEY": "quoted"})


if __name__ == "__main__":
    unittest.main()
