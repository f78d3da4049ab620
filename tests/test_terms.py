from __future__ import annotations

import logging
from pathlib import Path

import pytest

from termscore.metrics import MetricDirectionality, load_metric_definitions
from termscore.terms import AdministrationTerm, build_registry, load_registry

REPO_ROOT = Path(__file__).resolve().parents[1]
SPEC_DIR = REPO_ROOT / "spec"


class TestAdministrationTerm:
    def test_years_and_name(self):
        t = AdministrationTerm("obama-1", "Obama (2009–2013)", "D", 2009, 2012)
        assert t.years == [2009, 2010, 2011, 2012]
        assert t.name == "Obama"

    @pytest.mark.parametrize("start,end", [(2009, 2013), (2010, 2009)])
    def test_span_must_fit_four_slots(self, start, end):
        with pytest.raises(ValueError):
            AdministrationTerm("x", "X", "D", start, end)


class TestBuildRegistry:
    def test_dangling_entries_are_dropped(self, caplog):
        administrations = [
            {"value": "a-1", "label": "A (2001–2005)", "party": "D"},
            {"value": "b-1", "label": "B", "party": "R"},
        ]
        with caplog.at_level(logging.WARNING, logger="termscore.terms"):
            reg = build_registry(administrations, {"a-1": [2001, 2004], "c-1": {"start": 2009, "end": 2012}})
        assert reg.ids() == ["a-1"]
        assert reg.get("b-1") is None
        assert "b-1" in caplog.text
        assert "c-1" in caplog.text

    def test_duplicate_value(self):
        with pytest.raises(ValueError):
            build_registry(
                [{"value": "a", "party": "D"}, {"value": "a", "party": "D"}],
                {"a": [2001, 2004]},
            )

    def test_bad_party(self):
        with pytest.raises(ValueError):
            build_registry([{"value": "a", "party": "I"}], {"a": [2001, 2004]})


class TestShippedRegistries:
    def test_administrations(self):
        reg = load_registry(SPEC_DIR / "administrations_v1.yaml")
        assert len(reg.terms) == 12
        assert reg.ids()[0] == "trump-2"
        assert reg.first_year() == 1981
        assert {t.party for t in reg.by_party("R")} == {"R"}
        assert len(reg.by_party("D")) == 5
        biden = reg.get("biden-1")
        assert biden is not None and biden.years == [2021, 2022, 2023, 2024]

    def test_terms_do_not_overlap(self):
        reg = load_registry(SPEC_DIR / "administrations_v1.yaml")
        spans = sorted((t.start_year, t.end_year) for t in reg.terms)
        for (_s0, e0), (s1, _e1) in zip(spans, spans[1:]):
            assert s1 == e0 + 1

    def test_metrics(self):
        metrics = load_metric_definitions(SPEC_DIR / "metrics_v1.yaml")
        by_id = {m.id: m for m in metrics}
        assert by_id["cpi"].basis == "yoy"
        assert by_id["cpi"].directionality == MetricDirectionality.LOWER_IS_BETTER
        assert by_id["gdp"].directionality == MetricDirectionality.HIGHER_IS_BETTER
        assert by_id["deficit"].normalize["transform"] == "abs"
        assert by_id["gdp"].series_path == Path("data/series/gdp.json")
        assert all(m.normalize for m in metrics)
