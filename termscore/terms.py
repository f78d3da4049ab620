from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from termscore.spec import load_spec

logger = logging.getLogger(__name__)

PARTIES = ("D", "R")
TERM_SLOTS = 4

PARTY_LABELS = {
    "D": "Democrats",
    "R": "Republicans",
}


@dataclass(frozen=True)
class AdministrationTerm:
    term_id: str
    label: str
    party: str
    start_year: int
    end_year: int

    def __post_init__(self) -> None:
        span = self.end_year - self.start_year
        if span < 0 or span >= TERM_SLOTS:
            raise ValueError(
                f"term {self.term_id!r}: year span {self.start_year}..{self.end_year} must cover 1-{TERM_SLOTS} years"
            )

    @property
    def years(self) -> list[int]:
        return list(range(self.start_year, self.end_year + 1))

    @property
    def name(self) -> str:
        # "Obama (2009–2013)" -> "Obama"
        idx = self.label.find("(")
        return self.label[:idx].strip() if idx > 0 else self.label


@dataclass(frozen=True)
class TermRegistry:
    # Registry order is display order (most recent first in the shipped spec).
    terms: tuple[AdministrationTerm, ...]

    def get(self, term_id: str) -> AdministrationTerm | None:
        for t in self.terms:
            if t.term_id == term_id:
                return t
        return None

    def by_party(self, party: str) -> tuple[AdministrationTerm, ...]:
        return tuple(t for t in self.terms if t.party == party)

    def ids(self) -> list[str]:
        return [t.term_id for t in self.terms]

    def first_year(self) -> int | None:
        if not self.terms:
            return None
        return min(t.start_year for t in self.terms)


def _parse_year_range(raw: Any, *, term_id: str) -> tuple[int, int]:
    if isinstance(raw, dict):
        start, end = raw.get("start"), raw.get("end")
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        start, end = raw
    else:
        raise ValueError(f"term_years[{term_id!r}] must be [start, end] or {{start, end}}")
    try:
        return int(start), int(end)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"term_years[{term_id!r}] has non-integer years: {raw!r}") from exc


def build_registry(
    administrations: list[dict[str, Any]],
    term_years: dict[str, Any],
) -> TermRegistry:
    """Join the ordered administration list with its year-range table.

    An administration without a year range (or a year range without an
    administration) is dropped with a warning; lookups for it then yield
    all-null series rather than failing.
    """
    terms: list[AdministrationTerm] = []
    seen: set[str] = set()
    for entry in administrations:
        term_id = str(entry.get("value") or "").strip()
        if not term_id:
            raise ValueError("administration entry missing value")
        if term_id in seen:
            raise ValueError(f"duplicate administration value={term_id!r}")
        seen.add(term_id)

        party = str(entry.get("party") or "").strip()
        if party not in PARTIES:
            raise ValueError(f"administration {term_id!r}: unexpected party={party!r}")

        raw_years = term_years.get(term_id)
        if raw_years is None:
            logger.warning("administration %r has no term_years entry; skipping", term_id)
            continue
        start, end = _parse_year_range(raw_years, term_id=term_id)
        terms.append(
            AdministrationTerm(
                term_id=term_id,
                label=str(entry.get("label") or term_id),
                party=party,
                start_year=start,
                end_year=end,
            )
        )

    for term_id in sorted(set(term_years) - seen):
        logger.warning("term_years entry %r has no administration; skipping", term_id)

    return TermRegistry(terms=tuple(terms))


def load_registry(path: Path) -> TermRegistry:
    spec = load_spec(path)
    administrations = spec.get("administrations") or []
    term_years = spec.get("term_years") or {}
    if not isinstance(administrations, list):
        raise ValueError(f"{path}: administrations must be a list")
    if not isinstance(term_years, dict):
        raise ValueError(f"{path}: term_years must be a mapping")
    return build_registry(administrations, term_years)
