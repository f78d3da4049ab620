from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import pytest

from termscore.series import (
    SeriesFormatError,
    load_series_files,
    load_series_json,
    parse_series_payload,
)

FIXTURE_DIR = Path(__file__).parent / "fixtures"


def _payload(data: list[dict]) -> dict:
    return {"meta": {"id": "m", "title": "M"}, "data": data}


class TestParseSeriesPayload:
    def test_fixture_loads(self):
        s = load_series_json(FIXTURE_DIR / "series" / "unemployment.json")
        assert s.meta.id == "unemployment"
        assert s.meta.coverage_start == 1997
        assert s.latest_row() is not None
        assert s.sub_period_kind == "month"
        assert len(s.annual_rows()) == 16

    def test_latest_may_share_final_year(self):
        s = parse_series_payload(
            _payload(
                [
                    {"year": 2023, "value": 1.0},
                    {"year": 2024, "value": 2.0},
                    {"year": 2024, "value": 3.0, "latest": True, "quarter": 2},
                ]
            )
        )
        assert s.sub_period_kind == "quarter"
        # The finalized annual row wins for the shared year.
        assert s.level_map()[2024] == 2.0

    def test_latest_fills_missing_year(self):
        s = parse_series_payload(
            _payload([{"year": 2024, "value": 2.0}, {"year": 2025, "value": 3.0, "yoy": 50.0, "latest": True, "month": 4}])
        )
        assert s.level_map() == {2024: 2.0, 2025: 3.0}
        assert s.level_map(include_latest=False) == {2024: 2.0}
        assert s.yoy_map() == {2025: 50.0}
        assert s.year_map("yoy") == {2025: 50.0}

    def test_unknown_basis(self):
        s = parse_series_payload(_payload([]))
        with pytest.raises(ValueError):
            s.year_map("median")

    @pytest.mark.parametrize(
        "data",
        [
            [{"year": 2001, "value": 1.0}, {"year": 2000, "value": 1.0}],
            [{"year": 2000, "value": 1.0}, {"year": 2000, "value": 2.0}],
            [{"year": 2000.5, "value": 1.0}],
            [{"year": 2000, "value": "1.0"}],
            [{"year": 2000}],
            [{"year": 2000, "value": 1.0, "latest": True}, {"year": 2001, "value": 1.0, "latest": True}],
            [{"year": 2000, "value": 1.0, "latest": True}, {"year": 2001, "value": 1.0}],
        ],
    )
    def test_rejects_malformed_rows(self, data):
        with pytest.raises(SeriesFormatError):
            parse_series_payload(_payload(data))

    def test_rejects_non_object(self):
        with pytest.raises(SeriesFormatError):
            parse_series_payload([1, 2, 3])


class LoadSeriesFilesTests(unittest.TestCase):
    def test_missing_and_malformed_are_left_out(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            bad = root / "bad.json"
            bad.write_text("{not json", encoding="utf-8")
            wrong = root / "wrong.json"
            wrong.write_text(json.dumps({"meta": {}, "data": "nope"}), encoding="utf-8")
            loaded = load_series_files(
                {
                    "unemployment": FIXTURE_DIR / "series" / "unemployment.json",
                    "bad": bad,
                    "wrong": wrong,
                    "missing": root / "missing.json",
                }
            )
        self.assertEqual(sorted(loaded), ["unemployment"])

    def test_invalid_json_raises_format_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir) / "x.json"
            p.write_text("[", encoding="utf-8")
            with self.assertRaises(SeriesFormatError):
                load_series_json(p)
